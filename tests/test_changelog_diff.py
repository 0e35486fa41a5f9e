"""
Revision diff tests.

Tests cover:
  - Symmetry (diff(a, b) is diff(b, a) with values swapped)
  - Excluded fields (identity, status, approval bookkeeping)
  - Deterministic ordering and change-type classification
  - Set semantics for products
  - Unrelated lineages rejected
"""
from datetime import date

import pytest

from sowflow.core.exceptions import NotFoundError, UnrelatedRevisionsError, ValidationError
from sowflow.models import db
from sowflow.services import version_lineage
from sowflow.services.changelog_differ import (
    compare_fields,
    diff,
    diff_revisions,
    generate_diff_summary,
    get_change_type,
    get_field_display_name,
    value_to_string,
)


@pytest.fixture()
def pair(make_sow, author):
    """v1 and an edited v2 of the same lineage."""
    v1 = make_sow(custom_scope_content="Phase 1")
    v2 = version_lineage.create_revision(v1.id, author.actor_id)
    v2.title = "Acme Rollout (revised)"
    v2.custom_scope_content = "Phase 1 and Phase 2"
    v2.timeline_weeks = 12
    db.session.commit()
    return v1, v2


# ═════════════════════════════════════════════════════════════════════════
# DIFF
# ═════════════════════════════════════════════════════════════════════════

class TestDiff:
    def test_changed_fields(self, pair):
        v1, v2 = pair
        changes = {c.field_name: c for c in diff(v1, v2)}
        assert set(changes) == {"title", "custom_scope_content", "timeline_weeks"}
        assert changes["title"].previous_value == "Acme Rollout"
        assert changes["title"].new_value == "Acme Rollout (revised)"
        assert changes["timeline_weeks"].previous_value == ""
        assert changes["timeline_weeks"].new_value == "12"

    def test_symmetric(self, pair):
        v1, v2 = pair
        forward = diff(v1, v2)
        backward = diff(v2, v1)
        assert [c.field_name for c in forward] == [c.field_name for c in backward]
        for f, b in zip(forward, backward):
            assert (f.previous_value, f.new_value) == (b.new_value, b.previous_value)

    def test_identical_revisions(self, pair):
        v1, _ = pair
        assert diff(v1, v1) == []

    def test_status_and_bookkeeping_excluded(self, pair):
        v1, v2 = pair
        v1.status = "rejected"
        v1.rejected_by = "u-manager"
        v1.approval_comments = "No"
        v2.submitted_by = "u-author"
        fields = {c.field_name for c in diff(v1, v2)}
        assert fields.isdisjoint({
            "status", "rejected_by", "approval_comments", "submitted_by",
            "id", "version", "is_latest", "parent_id", "created_at", "updated_at",
        })

    def test_ordering_by_type_then_field(self, pair):
        v1, v2 = pair
        changes = diff(v1, v2)
        assert [(c.change_type, c.field_name) for c in changes] == [
            ("field_update", "timeline_weeks"),
            ("field_update", "title"),
            ("content_edit", "custom_scope_content"),
        ]

    def test_product_order_is_not_a_change(self, make_sow, author):
        v1 = make_sow(products=["b", "a"])
        v2 = version_lineage.create_revision(v1.id, author.actor_id)
        v2.products = ["a", "b"]
        db.session.commit()
        assert diff(v1, v2) == []

    def test_unrelated_lineages(self, make_sow):
        a = make_sow(title="A")
        b = make_sow(title="B")
        with pytest.raises(UnrelatedRevisionsError) as exc:
            diff(a, b)
        assert isinstance(exc.value, ValidationError)
        assert exc.value.details["lineage_roots"] == {a.id: a.id, b.id: b.id}

    def test_diff_revisions_by_id(self, pair):
        v1, v2 = pair
        assert len(diff_revisions(v1.id, v2.id)) == 3
        with pytest.raises(NotFoundError):
            diff_revisions(v1.id, "missing")


# ═════════════════════════════════════════════════════════════════════════
# HELPERS
# ═════════════════════════════════════════════════════════════════════════

class TestHelpers:
    def test_value_to_string(self):
        assert value_to_string(None) == ""
        assert value_to_string(date(2026, 1, 5)) == "2026-01-05"
        assert value_to_string({"b": 1, "a": 2}) == '{"a": 2, "b": 1}'
        assert value_to_string(["z", "a"], "products") == '["a", "z"]'
        assert value_to_string(["z", "a"], "deliverables") == '["z", "a"]'

    def test_change_type(self):
        assert get_change_type("status") == "status_change"
        assert get_change_type("custom_intro_content") == "content_edit"
        assert get_change_type("objectives_description") == "field_update"

    def test_display_names(self):
        assert get_field_display_name("client_name") == "Client Name"
        assert get_field_display_name("some_new_field") == "Some New Field"

    def test_summaries(self):
        assert generate_diff_summary("status", "draft", "in_review", "status_change") == \
            'Status changed from "draft" to "in_review"'
        assert generate_diff_summary("custom_scope_content", "abc", "abcdef", "content_edit") == \
            "Scope Content content expanded (3 → 6 characters)"
        assert generate_diff_summary("title", "", "New", "field_update") == 'SOW Title set to "New"'
        assert generate_diff_summary("title", "Old", "", "field_update") == 'SOW Title cleared (was "Old")'

    def test_compare_fields_custom_exclusions(self):
        changes = compare_fields({"a": 1, "b": 1}, {"a": 2, "b": 2}, excluded={"b"})
        assert [c.field_name for c in changes] == ["a"]
