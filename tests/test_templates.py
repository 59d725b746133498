import pytest

from core.errors import DimensionMismatch
from core.recognition.profiles import IdentityProfile
from core.recognition.templates import (
    TemplateAggregator,
    check_dimensions,
    mean_vector,
    normalize_embeddings,
)


def test_mean_of_two_vectors():
    assert mean_vector([[1.0, 0.0], [3.0, 0.0]]) == [2.0, 0.0]


def test_mean_of_no_vectors_is_none():
    assert mean_vector([]) is None


def test_normalize_list_uses_index_keys():
    samples = normalize_embeddings([[1, 2], [3, 4]])
    assert samples == [("0", [1.0, 2.0]), ("1", [3.0, 4.0])]


def test_normalize_mapping_keeps_keys_in_order():
    samples = normalize_embeddings({"1700000000000": [1, 0], "1700000000500": [0, 1]})
    assert [key for key, _ in samples] == ["1700000000000", "1700000000500"]


def test_normalize_missing_is_empty():
    assert normalize_embeddings(None) == []


def test_normalize_rejects_non_numeric():
    with pytest.raises(DimensionMismatch):
        normalize_embeddings([["a", "b"]])


def test_check_dimensions_reports_lengths():
    with pytest.raises(DimensionMismatch) as excinfo:
        check_dimensions([[1, 2, 3], [1, 2]])
    assert excinfo.value.lengths == [2, 3]


def test_add_sample_leaves_average_stale():
    aggregator = TemplateAggregator(clock=lambda: 1700000000.0)
    profile = aggregator.merge_profile({"identityId": "u1", "embeddings": [[1.0, 0.0]]})
    assert profile.embedding_average == [1.0, 0.0]

    updated = aggregator.add_sample(profile, [3.0, 0.0])

    assert updated.sample_count == 2
    assert updated.embedding_average == [1.0, 0.0]
    assert not updated.average_is_current()
    assert [key for key, _ in updated.samples] == ["0", "1700000000000"]


def test_add_sample_bumps_duplicate_keys():
    aggregator = TemplateAggregator(clock=lambda: 1.0)
    profile = IdentityProfile(identity_id="u1")
    profile = aggregator.add_sample(profile, [1.0])
    profile = aggregator.add_sample(profile, [2.0])
    assert [key for key, _ in profile.samples] == ["1000", "1001"]


def test_add_sample_rejects_other_dimension():
    aggregator = TemplateAggregator()
    profile = aggregator.add_sample(IdentityProfile(identity_id="u1"), [1.0, 2.0])
    with pytest.raises(DimensionMismatch):
        aggregator.add_sample(profile, [1.0, 2.0, 3.0])


def test_merge_recomputes_average_over_all_samples():
    aggregator = TemplateAggregator()
    existing = aggregator.merge_profile({"identityId": "u1", "embeddings": {"a": [1.0, 0.0]}})

    merged = aggregator.merge_profile({"identityId": "u1", "embeddings": {"b": [3.0, 0.0]}}, existing)

    assert dict(merged.samples) == {"a": [1.0, 0.0], "b": [3.0, 0.0]}
    assert merged.embedding_average == [2.0, 0.0]
    assert merged.embedding_average_count == 2


def test_merge_with_zero_samples_has_no_average():
    profile = TemplateAggregator().merge_profile({"identityId": "u1", "displayName": "Ana"})
    assert profile.samples == []
    assert profile.embedding_average is None


def test_merge_mismatched_lengths_raises():
    aggregator = TemplateAggregator()
    existing = aggregator.merge_profile({"identityId": "u1", "embeddings": [[1.0, 0.0]]})
    with pytest.raises(DimensionMismatch):
        aggregator.merge_profile({"identityId": "u1", "embeddings": {"x": [1.0, 0.0, 0.0]}}, existing)
    assert existing.embedding_average == [1.0, 0.0]


def test_merge_overrides_fields_and_appends_image_urls():
    aggregator = TemplateAggregator()
    existing = aggregator.merge_profile(
        {"identityId": "u1", "displayName": "Old", "active": False, "imageUrls": ["a.jpg"]}
    )
    merged = aggregator.merge_profile(
        {"identityId": "u1", "displayName": "New", "active": True, "imageUrls": ["a.jpg", "b.jpg"]},
        existing,
    )
    assert merged.display_name == "New"
    assert merged.active is True
    assert merged.image_urls == ["a.jpg", "b.jpg"]


def test_merge_requires_identity():
    with pytest.raises(ValueError):
        TemplateAggregator().merge_profile({"displayName": "nobody"})


def test_profile_reads_legacy_field_names():
    profile = IdentityProfile.from_document(
        {"userId": "abc", "email": "a@example.com", "embeddings": [[0.5, 0.5]], "active": True}
    )
    assert profile.identity_id == "abc"
    assert profile.contact_email == "a@example.com"
    assert profile.samples == [("0", [0.5, 0.5])]
    assert profile.to_document()["embeddings"] == {"0": [0.5, 0.5]}
