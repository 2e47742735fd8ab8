"""
Tests for organization slug normalization and collision resolution.
"""

import pytest

from tenantgate.services.slugs import (
    SLUG_MAX_LENGTH,
    InvalidSlugError,
    SlugExhaustedError,
    assign_available_slug,
    slugify,
    validate_slug,
)


class Probe:
    """Records every candidate passed to the exists callback."""

    def __init__(self, taken):
        self.taken = taken
        self.calls: list[str] = []

    async def __call__(self, candidate: str) -> bool:
        self.calls.append(candidate)
        return self.taken(candidate)


class TestValidateSlug:
    @pytest.mark.parametrize("slug", ["acme", "acme-corp", "a1b", "x" * SLUG_MAX_LENGTH])
    def test_valid(self, slug):
        assert validate_slug(slug).valid

    @pytest.mark.parametrize(
        "slug,reason",
        [
            ("", "required"),
            (None, "required"),
            ("ab", "at least"),
            ("x" * (SLUG_MAX_LENGTH + 1), "at most"),
            ("Acme", "lowercase"),
            ("acme_corp", "lowercase"),
            ("-acme", "hyphen"),
            ("acme-", "hyphen"),
            ("admin", "reserved"),
            ("api", "reserved"),
        ],
    )
    def test_invalid(self, slug, reason):
        result = validate_slug(slug)
        assert not result.valid
        assert reason in result.reason


class TestSlugify:
    def test_basic(self):
        assert slugify("Acme Corp") == "acme-corp"

    def test_collapses_runs_and_trims(self):
        assert slugify("  --Acme!!  Corp & Co.--") == "acme-corp-co"

    def test_truncates_without_trailing_hyphen(self):
        slug = slugify("a" * 47 + " bcd")
        assert len(slug) <= SLUG_MAX_LENGTH
        assert not slug.endswith("-")

    def test_no_alphanumerics(self):
        assert slugify("!!!") == ""

    def test_non_string(self):
        assert slugify(None) == ""

    @pytest.mark.parametrize(
        "name", ["Acme Corp", "Widgets, Inc.", "  123 Numbers ", "Ünïcode Wörks Ltd", "a" * 200]
    )
    def test_output_validates(self, name):
        assert validate_slug(slugify(name)).valid


class TestAssignAvailableSlug:
    async def test_base_free(self):
        probe = Probe(lambda c: False)
        assert await assign_available_slug("acme-corp", probe) == "acme-corp"
        assert probe.calls == ["acme-corp"]

    async def test_third_candidate_after_three_probes(self):
        probe = Probe(lambda c: c in {"acme-corp", "acme-corp-2"})
        assert await assign_available_slug("acme-corp", probe) == "acme-corp-3"
        assert probe.calls == ["acme-corp", "acme-corp-2", "acme-corp-3"]

    async def test_exhausted_after_max_attempts(self):
        probe = Probe(lambda c: True)
        with pytest.raises(SlugExhaustedError) as exc_info:
            await assign_available_slug("acme-corp", probe, max_attempts=5)
        assert len(probe.calls) == 5
        assert exc_info.value.attempts == 5

    async def test_suffix_respects_max_length(self):
        base = "a" * SLUG_MAX_LENGTH
        probe = Probe(lambda c: c == base)
        slug = await assign_available_slug(base, probe)
        assert slug.endswith("-2")
        assert len(slug) == SLUG_MAX_LENGTH

    async def test_invalid_base_rejected(self):
        probe = Probe(lambda c: False)
        with pytest.raises(InvalidSlugError):
            await assign_available_slug("admin", probe)
        assert probe.calls == []
