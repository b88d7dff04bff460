import pytest

from archive_streams.services.terms import derive_acronyms, expand_search_terms


def test_primary_title_comes_first_and_duplicates_collapse():
    terms = expand_search_terms(
        "Night of the Living Dead",
        ["night of the living dead", "La Noche de los Muertos Vivientes", ""],
    )

    assert terms.primary == "Night of the Living Dead"
    assert terms.titles == (
        "Night of the Living Dead",
        "La Noche de los Muertos Vivientes",
    )


def test_acronyms_follow_all_titles():
    terms = expand_search_terms("Breaking Bad", ["Totally Different Show"])

    assert terms.titles == ("Breaking Bad", "Totally Different Show")
    assert terms.acronyms[0] == "bb"
    assert "tds" in terms.acronyms
    assert terms.all()[: len(terms.titles)] == list(terms.titles)
    assert len(terms) == len(terms.titles) + len(terms.acronyms)


def test_single_word_titles_yield_no_acronyms():
    terms = expand_search_terms("Nosferatu")

    assert terms.titles == ("Nosferatu",)
    assert terms.acronyms == ()


@pytest.mark.parametrize(
    "title, expected_first",
    [
        ("Night of the Living Dead", "notld"),
        ("Star Trek: The Next Generation", "sttng"),
    ],
)
def test_derive_acronyms_full_initials_first(title, expected_first):
    assert derive_acronyms(title)[0] == expected_first


def test_derive_acronyms_needs_two_meaningful_words():
    assert derive_acronyms("The Lodger") == []


def test_derive_acronyms_without_vowels_variant():
    variants = derive_acronyms("Arsenic and Old Lace")
    assert variants[0] == "aaol"
    assert "l" not in variants
    assert all(2 <= len(v) <= 12 for v in variants)
