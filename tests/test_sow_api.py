"""
SOW workflow HTTP API tests.

Tests cover:
  - Identity headers (401 without, unknown role)
  - Create / get / patch
  - Stage requirements preview
  - Submit → decide → approved, with error mapping (403 / 409 / 422 / 404)
  - Recall, revision from rejected, revision list, diff
  - Changelog listing (SQL pagination), summary, CSV export
  - Threaded comments
  - Workflow consistency report
  - Database failures and revision races mapped to 500 / 409
  - Approval stage listing, health
"""
import pytest
from sqlalchemy.exc import OperationalError

from sowflow.core.exceptions import ConcurrentRevisionError
from sowflow.models import db
from sowflow.services import version_lineage


def _headers(actor_id="u-author", role="sales", email=None):
    h = {"X-User-Id": actor_id, "X-User-Role": role}
    if email:
        h["X-User-Email"] = email
    return h


AUTHOR = _headers("u-author", "sales", "author@example.com")
MANAGER = _headers("u-manager", "manager")
PMO = _headers("u-pmo", "pmo")
OTHER = _headers("u-other", "sales")


@pytest.fixture()
def sow(client):
    res = client.post("/api/v1/sows", headers=AUTHOR, json={
        "title": "Acme Rollout",
        "client_name": "Acme Corp",
        "products": ["prod-analytics", "prod-booking"],
        "pricing_roles": [{"role_id": "consultant", "units": 40}],
        "project_start_date": "2026-11-02",
    })
    assert res.status_code == 201
    return res.get_json()


@pytest.fixture()
def submitted(client, sow):
    res = client.post(f"/api/v1/sows/{sow['id']}/submit", headers=AUTHOR)
    assert res.status_code == 200
    data = res.get_json()
    return sow, {a["stage"]["slug"]: a for a in data["approvals"]}


# ═════════════════════════════════════════════════════════════════════════
# IDENTITY
# ═════════════════════════════════════════════════════════════════════════

class TestIdentity:
    def test_missing_headers(self, client):
        res = client.get("/api/v1/approval-stages", headers={"X-Request-ID": "req-401"})
        assert res.status_code == 401
        body = res.get_json()
        assert body["code"] == "ERR_UNAUTHENTICATED"
        assert body["request_id"] == "req-401"
        assert res.headers["X-Request-ID"] == "req-401"

    def test_unknown_role(self, client):
        res = client.get("/api/v1/approval-stages", headers=_headers(role="wizard"))
        assert res.status_code == 401

    def test_health_is_open(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_request_id_header(self, client):
        res = client.get("/api/v1/approval-stages", headers={**AUTHOR, "X-Request-ID": "abc123"})
        assert res.headers["X-Request-ID"] == "abc123"


# ═════════════════════════════════════════════════════════════════════════
# SOW CRUD
# ═════════════════════════════════════════════════════════════════════════

class TestSowCrud:
    def test_create(self, sow):
        assert sow["version"] == 1
        assert sow["status"] == "draft"
        assert sow["author_id"] == "u-author"
        assert sow["project_start_date"] == "2026-11-02"

    def test_create_requires_title(self, client):
        res = client.post("/api/v1/sows", headers=AUTHOR, json={"client_name": "X"})
        assert res.status_code == 422
        assert res.get_json()["details"] == {"title": "required"}

    def test_create_rejects_bookkeeping_fields(self, client):
        res = client.post("/api/v1/sows", headers=AUTHOR, json={"title": "X", "approved_by": "me"})
        assert res.status_code == 422

    def test_get(self, client, sow):
        res = client.get(f"/api/v1/sows/{sow['id']}", headers=AUTHOR)
        assert res.status_code == 200
        assert res.get_json()["title"] == "Acme Rollout"

    def test_get_not_found(self, client):
        res = client.get("/api/v1/sows/missing", headers=AUTHOR)
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_patch(self, client, sow):
        res = client.patch(f"/api/v1/sows/{sow['id']}", headers=AUTHOR, json={"timeline_weeks": 10})
        assert res.status_code == 200
        assert res.get_json()["timeline_weeks"] == 10

    def test_patch_by_other_user(self, client, sow):
        res = client.patch(f"/api/v1/sows/{sow['id']}", headers=OTHER, json={"title": "Mine"})
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_non_json_body_rejected(self, client, sow):
        res = client.patch(
            f"/api/v1/sows/{sow['id']}", headers=AUTHOR,
            data="title=x", content_type="application/x-www-form-urlencoded",
        )
        assert res.status_code == 415


# ═════════════════════════════════════════════════════════════════════════
# WORKFLOW
# ═════════════════════════════════════════════════════════════════════════

class TestWorkflowApi:
    def test_stage_requirements(self, client, sow):
        res = client.get(f"/api/v1/sows/{sow['id']}/stage-requirements", headers=AUTHOR)
        assert res.status_code == 200
        data = res.get_json()
        assert data["requires_pm_approval"] is False
        assert [s["status"] for s in data["stages"]] == ["required", "not_required", "required"]

    def test_submit(self, submitted):
        _, approvals = submitted
        assert approvals["project-management"]["status"] == "skipped"
        assert approvals["professional-services"]["status"] == "pending"

    def test_submit_twice(self, client, submitted):
        sow, _ = submitted
        res = client.post(f"/api/v1/sows/{sow['id']}/submit", headers=AUTHOR)
        assert res.status_code == 409
        assert res.get_json()["code"] == "WF_ALREADY_SUBMITTED"

    def test_full_approval(self, client, submitted):
        sow, approvals = submitted
        for slug in ("professional-services", "sr-leadership"):
            res = client.post(
                f"/api/v1/sows/{sow['id']}/approvals/{approvals[slug]['id']}/decide",
                headers=MANAGER, json={"action": "approve"},
            )
            assert res.status_code == 200
        assert res.get_json()["sow"]["status"] == "approved"

        status = client.get(f"/api/v1/sows/{sow['id']}/approvals", headers=AUTHOR).get_json()
        assert status["completion_percentage"] == 100
        assert status["current_stage"] is None

    def test_decide_wrong_role(self, client, submitted):
        sow, approvals = submitted
        res = client.post(
            f"/api/v1/sows/{sow['id']}/approvals/{approvals['sr-leadership']['id']}/decide",
            headers=PMO, json={"action": "approve"},
        )
        assert res.status_code == 403
        assert res.get_json()["details"]["required_roles"] == ["admin", "manager"]

    def test_decide_missing_action(self, client, submitted):
        sow, approvals = submitted
        res = client.post(
            f"/api/v1/sows/{sow['id']}/approvals/{approvals['sr-leadership']['id']}/decide",
            headers=MANAGER, json={},
        )
        assert res.status_code == 400

    def test_decide_non_string_action(self, client, submitted):
        sow, approvals = submitted
        res = client.post(
            f"/api/v1/sows/{sow['id']}/approvals/{approvals['sr-leadership']['id']}/decide",
            headers=MANAGER, json={"action": 1},
        )
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_decide_non_string_comments(self, client, submitted):
        sow, approvals = submitted
        res = client.post(
            f"/api/v1/sows/{sow['id']}/approvals/{approvals['sr-leadership']['id']}/decide",
            headers=MANAGER, json={"action": "approve", "comments": ["x"]},
        )
        assert res.status_code == 422
        assert res.get_json()["details"] == {"comments": "must be a string"}

    def test_validate_workflow(self, client, submitted):
        sow, _ = submitted
        res = client.get(f"/api/v1/sows/{sow['id']}/approvals/validate", headers=AUTHOR)
        assert res.status_code == 200
        body = res.get_json()
        assert body["valid"] is True
        assert body["status"] == "in_review"
        assert body["lineage"]["max_version"] == 1

    def test_submit_database_failure(self, client, sow, monkeypatch):
        def _locked(*args, **kwargs):
            raise OperationalError("INSERT INTO sow_approvals", {}, Exception("database is locked"))

        monkeypatch.setattr(db.session, "flush", _locked)
        res = client.post(f"/api/v1/sows/{sow['id']}/submit", headers=AUTHOR)
        assert res.status_code == 500
        body = res.get_json()
        assert body["code"] == "ERR_INTERNAL"
        assert body["details"] == {"operation": "submit"}

        monkeypatch.undo()
        res = client.get(f"/api/v1/sows/{sow['id']}", headers=AUTHOR)
        assert res.get_json()["status"] == "draft"

    def test_decide_after_reject(self, client, submitted):
        sow, approvals = submitted
        base = f"/api/v1/sows/{sow['id']}/approvals"
        res = client.post(f"{base}/{approvals['professional-services']['id']}/decide",
                          headers=MANAGER, json={"action": "reject", "comments": "No"})
        assert res.get_json()["sow"]["status"] == "rejected"

        res = client.post(f"{base}/{approvals['sr-leadership']['id']}/decide",
                          headers=MANAGER, json={"action": "approve"})
        assert res.status_code == 409
        assert res.get_json()["code"] == "WF_INVALID_STATE"

    def test_decide_wrong_sow(self, client, submitted):
        _, approvals = submitted
        res = client.post(
            f"/api/v1/sows/other/approvals/{approvals['sr-leadership']['id']}/decide",
            headers=MANAGER, json={"action": "approve"},
        )
        assert res.status_code == 404


# ═════════════════════════════════════════════════════════════════════════
# REVISIONS
# ═════════════════════════════════════════════════════════════════════════

class TestRevisionsApi:
    def test_recall_and_list(self, client, submitted):
        sow, _ = submitted
        res = client.post(f"/api/v1/sows/{sow['id']}/recall", headers=AUTHOR)
        assert res.status_code == 201
        new = res.get_json()
        assert new["version"] == 2

        res = client.get(f"/api/v1/sows/{new['id']}/revisions", headers=AUTHOR)
        items = res.get_json()["items"]
        assert [(r["version"], r["status"], r["is_latest"]) for r in items] == [
            (1, "recalled", False), (2, "draft", True),
        ]

    def test_recall_after_approval(self, client, submitted):
        sow, approvals = submitted
        client.post(
            f"/api/v1/sows/{sow['id']}/approvals/{approvals['professional-services']['id']}/decide",
            headers=MANAGER, json={"action": "approve"},
        )
        res = client.post(f"/api/v1/sows/{sow['id']}/recall", headers=AUTHOR)
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "WF_ALREADY_APPROVED"
        assert body["details"]["approved_stages"] == ["professional-services"]

    def test_revision_from_rejected_and_diff(self, client, submitted):
        sow, approvals = submitted
        client.post(
            f"/api/v1/sows/{sow['id']}/approvals/{approvals['sr-leadership']['id']}/decide",
            headers=MANAGER, json={"action": "reject", "comments": "Too long"},
        )
        res = client.post(f"/api/v1/sows/{sow['id']}/revision", headers=AUTHOR)
        assert res.status_code == 201
        new = res.get_json()

        client.patch(f"/api/v1/sows/{new['id']}", headers=AUTHOR, json={"timeline_weeks": 6})
        res = client.get(f"/api/v1/sows/{sow['id']}/diff/{new['id']}", headers=AUTHOR)
        assert res.status_code == 200
        changes = res.get_json()["changes"]
        assert [c["field_name"] for c in changes] == ["timeline_weeks"]

    def test_diff_unrelated(self, client, sow):
        other = client.post("/api/v1/sows", headers=AUTHOR, json={"title": "Other"}).get_json()
        res = client.get(f"/api/v1/sows/{sow['id']}/diff/{other['id']}", headers=AUTHOR)
        assert res.status_code == 422
        assert res.get_json()["code"] == "WF_UNRELATED_REVISIONS"

    def test_revision_race_is_409(self, client, submitted, monkeypatch):
        sow, _ = submitted

        def _conflict(source_id, actor_id):
            raise ConcurrentRevisionError(sow["id"], 2)

        monkeypatch.setattr(version_lineage, "create_revision", _conflict)
        res = client.post(f"/api/v1/sows/{sow['id']}/recall", headers=AUTHOR)
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "WF_CONCURRENT_REVISION"
        assert body["details"] == {"lineage_root_id": sow["id"]}


# ═════════════════════════════════════════════════════════════════════════
# CHANGELOG & CONFIG
# ═════════════════════════════════════════════════════════════════════════

class TestChangelogApi:
    def test_changelog_and_filters(self, client, submitted):
        sow, _ = submitted
        res = client.get(f"/api/v1/sows/{sow['id']}/changelog", headers=AUTHOR)
        data = res.get_json()
        assert data["total"] == 2
        assert data["items"][0]["change_type"] == "status_change"

        res = client.get(f"/api/v1/sows/{sow['id']}/changelog?change_type=version_created&limit=5",
                         headers=AUTHOR)
        assert res.get_json()["total"] == 1

    def test_changelog_pagination(self, client, sow):
        for weeks in (2, 4, 6):
            client.patch(f"/api/v1/sows/{sow['id']}", headers=AUTHOR, json={"timeline_weeks": weeks})
        base = f"/api/v1/sows/{sow['id']}/changelog"

        data = client.get(f"{base}?limit=2", headers=AUTHOR).get_json()
        assert data["total"] == 4
        assert [e["new_value"] for e in data["items"]] == ["6", "4"]

        data = client.get(f"{base}?limit=2&offset=2", headers=AUTHOR).get_json()
        assert data["total"] == 4
        assert [e["change_type"] for e in data["items"]] == ["field_update", "version_created"]

    def test_changelog_unknown_sow(self, client):
        res = client.get("/api/v1/sows/missing/changelog", headers=AUTHOR)
        assert res.status_code == 404

    def test_changelog_bad_date(self, client, sow):
        res = client.get(f"/api/v1/sows/{sow['id']}/changelog?start=yesterday", headers=AUTHOR)
        assert res.status_code == 422

    def test_summary_and_export(self, client, sow):
        res = client.get(f"/api/v1/sows/{sow['id']}/changelog/summary", headers=AUTHOR)
        assert res.get_json()["total_changes"] == 1

        res = client.get(f"/api/v1/sows/{sow['id']}/changelog/export", headers=AUTHOR)
        assert res.status_code == 200
        assert res.mimetype == "text/csv"
        assert "attachment" in res.headers["Content-Disposition"]
        assert res.get_data(as_text=True).startswith("Date,User,Change Type")

    def test_comment(self, client, sow):
        res = client.post(f"/api/v1/sows/{sow['id']}/comments", headers=MANAGER,
                          json={"comment": "Looks good"})
        assert res.status_code == 201
        assert res.get_json()["user_id"] == "u-manager"

        res = client.post(f"/api/v1/sows/{sow['id']}/comments", headers=MANAGER, json={})
        assert res.status_code == 422

    def test_comment_must_be_string(self, client, sow):
        res = client.post(f"/api/v1/sows/{sow['id']}/comments", headers=MANAGER,
                          json={"comment": {"text": "hi"}})
        assert res.status_code == 422
        assert res.get_json()["details"] == {"comment": "must be a string"}

    def test_comment_thread(self, client, sow):
        url = f"/api/v1/sows/{sow['id']}/comments"
        top = client.post(url, headers=MANAGER, json={"comment": "Scope?"}).get_json()
        res = client.post(url, headers=AUTHOR, json={"comment": "Phase 1", "parent_id": top["id"]})
        assert res.status_code == 201
        assert res.get_json()["parent_id"] == top["id"]

        data = client.get(url, headers=AUTHOR).get_json()
        assert data["total"] == 1
        thread = data["items"][0]
        assert thread["comment"] == "Scope?"
        assert thread["version"] == 1
        assert [r["comment"] for r in thread["replies"]] == ["Phase 1"]

    def test_reply_to_missing_comment(self, client, sow):
        res = client.post(f"/api/v1/sows/{sow['id']}/comments", headers=AUTHOR,
                          json={"comment": "Hello?", "parent_id": 424242})
        assert res.status_code == 404
        assert res.get_json()["details"]["resource"] == "SowComment"

    def test_approval_stages(self, client):
        res = client.get("/api/v1/approval-stages", headers=AUTHOR)
        assert [s["slug"] for s in res.get_json()] == [
            "professional-services", "project-management", "sr-leadership",
        ]
