"""Tests for speaker size canonicalization and the matcher's size rule."""

from caraudio_pos.utils.sizes import (
    bucket_label,
    canonical_sizes,
    canonicalize,
    is_oval,
    parse_inches,
    parse_oval,
    sizes_match,
)

# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class TestParseInches:
    def test_decimal(self):
        assert parse_inches("6.5") == 6.5

    def test_whole_and_fraction(self):
        assert parse_inches("6 3/4") == 6.75

    def test_hyphenated_fraction_with_inch_mark(self):
        assert parse_inches('6-1/2"') == 6.5

    def test_bare_fraction_has_no_whole_part(self):
        assert parse_inches("3/4") == 0.75

    def test_unicode_fraction_glyph(self):
        assert parse_inches("6½") == 6.5

    def test_unit_words_are_stripped(self):
        assert parse_inches("5.25 inches") == 5.25
        assert parse_inches("4in") == 4.0

    def test_metric_woofer_maps_to_nominal_size(self):
        assert parse_inches("165mm") == 6.5
        assert parse_inches("130 mm") == 5.25

    def test_oval_is_not_a_round_size(self):
        assert parse_inches("6x9") is None

    def test_garbage(self):
        assert parse_inches("tweeter") is None
        assert parse_inches("") is None
        assert parse_inches(None) is None


class TestParseOval:
    def test_lowercase_axb(self):
        assert parse_oval("6X9") == "6x9"

    def test_by_and_spaces(self):
        assert parse_oval("6 by 9") == "6x9"
        assert parse_oval('5 x 7"') == "5x7"

    def test_decimal_oval_keeps_decimals(self):
        assert parse_oval("4x6.5") == "4x6.5"

    def test_round_size_is_not_oval(self):
        assert parse_oval("6.5") is None
        assert not is_oval("6 1/2")


# ---------------------------------------------------------------------------
# Canonicalization
# ---------------------------------------------------------------------------


class TestCanonicalize:
    """Spellings of the same physical size collapse to one string."""

    def test_six_and_a_half_spellings_agree(self):
        spellings = ["6.5", "6 1/2", '6-1/2"', "6½", '6.5"', "6 3/4", "6.75in", "165mm"]
        assert {canonicalize(s) for s in spellings} == {'6.5"'}

    def test_five_and_a_quarter(self):
        assert canonicalize("5 1/4") == '5.25"'
        assert canonicalize("5.25") == '5.25"'

    def test_buckets_are_inclusive(self):
        assert bucket_label(6.4) == '6.5"'
        assert bucket_label(6.8) == '6.5"'
        assert bucket_label(5.05) == '5"'

    def test_outside_buckets_rounds_to_quarter(self):
        assert canonicalize("2.7") == '2.75"'
        assert canonicalize("6") == '6"'

    def test_oval_returned_verbatim_lowercase(self):
        assert canonicalize("6x9") == "6x9"
        assert canonicalize("6 X 9") == "6x9"

    def test_oval_never_lands_in_round_bucket(self):
        for oval in ["6x9", "5x7", "6x8", "4x6"]:
            assert '"' not in canonicalize(oval)

    def test_unparseable_returns_trimmed_input(self):
        assert canonicalize("  tweeter  ") == "tweeter"
        assert canonicalize("N/A") == "N/A"

    def test_none_is_empty(self):
        assert canonicalize(None) == ""

    def test_canonical_sizes_drops_blanks(self):
        assert canonical_sizes(["6.5", "6 1/2", "", "6x9"]) == {'6.5"', "6x9"}
        assert canonical_sizes("6.5") == {'6.5"'}
        assert canonical_sizes(None) == set()


# ---------------------------------------------------------------------------
# Matching tolerance
# ---------------------------------------------------------------------------


class TestSizesMatch:
    def test_vendor_disagreement_within_tolerance(self):
        assert sizes_match("6.5", "6.75")
        assert sizes_match('6.5"', "6 3/4")

    def test_tolerance_boundary(self):
        assert sizes_match("6.5", "6.85")
        assert not sizes_match("6.5", "6.9")

    def test_different_sizes(self):
        assert not sizes_match("6.5", "5.25")

    def test_ovals_by_exact_equality_only(self):
        assert sizes_match("6x9", "6 X 9")
        assert not sizes_match("6x9", "6x8")

    def test_oval_never_matches_round(self):
        assert not sizes_match("6x9", "6.5")
        assert not sizes_match("6.5", "6x9")

    def test_unparseable_never_matches(self):
        assert not sizes_match("tweeter", "tweeter")
        assert not sizes_match("6.5", "")
