# tests/test_clustering.py
from tab_orchestra.client.clustering import (
    fallback_partition,
    generic_prompts,
    host_of,
    parse_prompts,
    validate_partition,
)

TABS = [
    {"title": "Figma", "url": "https://figma.com/file/1"},
    {"title": "React docs", "url": "https://react.dev/learn"},
    {"title": "Dribbble", "url": "https://dribbble.com/shots"},
    {"title": "React hooks", "url": "https://react.dev/reference"},
]


def names(clusters):
    return [c["name"] for c in clusters]


def urls(cluster):
    return [t["url"] for t in cluster["tabs"]]


def test_fallback_groups_by_host_in_first_seen_order():
    clusters = fallback_partition(TABS)
    assert names(clusters) == ["figma.com", "react.dev", "dribbble.com"]
    assert urls(clusters[1]) == ["https://react.dev/learn", "https://react.dev/reference"]
    assert clusters[0]["theme"] == "Content from figma.com"


def test_fallback_puts_bad_urls_in_other():
    clusters = fallback_partition([{"url": "not a url"}, {"url": None}, {"url": "https://a.test/x"}])
    assert names(clusters) == ["Other", "a.test"]
    assert len(clusters[0]["tabs"]) == 2


def test_fallback_single_tab_and_empty():
    assert names(fallback_partition(TABS[:1])) == ["figma.com"]
    assert fallback_partition([]) == []


def test_host_of():
    assert host_of("https://Example.COM:8443/path") == "example.com"
    assert host_of("mailto:someone") is None
    assert host_of(42) is None


def test_semantic_partition_covers_every_tab_once():
    response = {"clusters": [
        {"name": "Design", "tabs": [0, 2], "theme": "Visual design tools"},
        {"name": "React", "tabs": [1, 3]},
    ]}
    result = validate_partition(response, TABS)

    assert result.classified == 4
    assert names(result.clusters) == ["Design", "React"]
    assert result.clusters[1]["theme"] == "Collection of react content"


def test_out_of_range_and_bad_indices_are_ignored():
    response = {"clusters": [{"name": "Design", "tabs": [0, 7, -1, "2", True, 2.0]}]}
    result = validate_partition(response, TABS)

    assert urls(result.clusters[0]) == ["https://figma.com/file/1", "https://dribbble.com/shots"]
    assert result.classified == 2
    other = result.clusters[-1]
    assert other["name"] == "Other"
    assert urls(other) == ["https://react.dev/learn", "https://react.dev/reference"]


def test_first_claim_wins_and_empty_clusters_drop():
    response = {"clusters": [
        {"name": "A", "tabs": [0, 1]},
        {"name": "B", "tabs": [1]},
        {"name": "C", "tabs": [2, 3]},
    ]}
    result = validate_partition(response, TABS)
    assert names(result.clusters) == ["A", "C"]


def test_unclaimed_tabs_merge_into_returned_other():
    response = {"clusters": [
        {"name": "other", "tabs": [3], "theme": "misc"},
        {"name": "Design", "tabs": [0]},
    ]}
    result = validate_partition(response, TABS)

    assert names(result.clusters) == ["other", "Design"]
    assert urls(result.clusters[0]) == ["https://react.dev/reference", "https://react.dev/learn",
                                        "https://dribbble.com/shots"]


def test_malformed_clusters_are_skipped():
    response = {"clusters": [
        {"tabs": [0]},
        {"name": "", "tabs": [1]},
        {"name": 5, "tabs": [2]},
        "junk",
        {"name": "Good", "tabs": [3]},
    ]}
    result = validate_partition(response, TABS)
    assert names(result.clusters) == ["Good", "Other"]
    assert result.classified == 1


def test_unusable_response_claims_nothing():
    for response in (None, "text", {"clusters": "nope"}, {"clusters": []}, {}):
        result = validate_partition(response, TABS)
        assert result.classified == 0
        assert names(result.clusters) == ["Other"]


def test_bare_list_response_is_accepted():
    result = validate_partition([{"name": "All", "tabs": [0, 1, 2, 3]}], TABS)
    assert names(result.clusters) == ["All"]


def test_parse_prompts_strips_leaders_and_filters():
    text = """1. How do these design tools compare for team use?
    - Short?
    * What would a shared component library need?

    • Which of these resources challenges your assumptions the most?
    Not a question at all, just a statement.
    4) One more question that should be cut off?"""
    assert parse_prompts(text) == [
        "How do these design tools compare for team use?",
        "What would a shared component library need?",
        "Which of these resources challenges your assumptions the most?",
    ]


def test_parse_prompts_empty():
    assert parse_prompts("") == []
    assert parse_prompts(None) == []


def test_generic_prompts_name_the_cluster():
    prompts = generic_prompts("Design")
    assert len(prompts) == 3
    assert all("Design" in p and p.endswith("?") for p in prompts)
