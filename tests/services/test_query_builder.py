from archive_streams.services.query_builder import (
    build_collection_queries,
    build_episode_queries,
    build_movie_queries,
    episode_patterns,
    popularity_filter,
    year_range_filter,
)


def test_year_range_filter():
    assert year_range_filter(1922) == " AND year:[1921 TO 1924]"
    assert year_range_filter(1922, before=0, after=0) == " AND year:[1922 TO 1922]"
    assert year_range_filter(None) == ""


def test_popularity_filter():
    assert popularity_filter(10) == " AND downloads:[10 TO *]"


def test_movie_queries_exact_year_then_range():
    queries = build_movie_queries(["Nosferatu", "Nosferatu eine Symphonie"], 1922)

    assert queries == [
        'title:("Nosferatu") AND year:1922',
        'title:("Nosferatu eine Symphonie") AND year:1922',
        'title:("Nosferatu") AND year:[1921 TO 1924] AND downloads:[10 TO *]',
        'title:("Nosferatu eine Symphonie") AND year:[1921 TO 1924]'
        " AND downloads:[10 TO *]",
    ]


def test_movie_queries_without_year():
    queries = build_movie_queries(["Nosferatu"], None)
    assert queries == [
        'title:("Nosferatu")',
        'title:("Nosferatu") AND downloads:[10 TO *]',
    ]


def test_movie_queries_limit_terms_and_escape_quotes():
    terms = [f'Title "{i}"' for i in range(10)]
    queries = build_movie_queries(terms, 2000, max_terms=2)

    assert len(queries) == 4
    assert queries[0] == 'title:("Title \\"0\\"") AND year:2000'


def test_episode_patterns_order():
    patterns = episode_patterns(2, 5)
    assert patterns[0] == "S02E05"
    assert patterns[1] == "2x05"
    assert patterns[-1] == '"Part 5"'
    assert len(patterns) == 5


def test_episode_queries_structure():
    queries = build_episode_queries(
        ["Breaking Bad", "bb"], 2, 5, 2009, episode_title="Breakage"
    )

    assert queries[0] == 'title:("Breaking Bad") AND (S02E05) AND year:[2008 TO 2011]'
    # five patterns per term, one episode-title query per term, one catch-all per term
    assert len(queries) == 2 * 5 + 2 + 2
    assert 'title:("bb") AND ("Breakage") AND year:[2008 TO 2011]' in queries
    assert queries[-1] == (
        'title:("bb") AND year:[2008 TO 2011] AND downloads:[10 TO *]'
    )


def test_episode_queries_without_episode_title():
    queries = build_episode_queries(["Breaking Bad"], 1, 1, None)
    assert len(queries) == 6
    assert all("year:" not in q for q in queries)


def test_collection_queries_are_deduplicated_phrases():
    assert build_collection_queries(["Dragnet", "Dragnet", "The Lone Ranger"]) == [
        'title:("Dragnet")',
        'title:("The Lone Ranger")',
    ]
