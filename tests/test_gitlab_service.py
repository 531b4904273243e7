import json
import logging
import unittest

from helpers import FakeTransport, make_service, make_store, WEBHOOK_URL

logging.disable(logging.CRITICAL)

API = "https://gitlab.example/api/v4"
PROJECT = f"{API}/projects/group%2Fapp"


def _issue(iid, **overrides):
    data = {
        "iid": iid,
        "title": f"Issue {iid}",
        "description": "Steps to reproduce",
        "state": "opened",
        "labels": ["bug", "ui"],
        "updated_at": "2025-01-02T10:00:00.000Z",
        "due_date": None,
        "milestone": None,
        "assignee": None,
    }
    data.update(overrides)
    return data


def _our_hook(hook_id=7, **overrides):
    hook = {
        "id": hook_id,
        "url": WEBHOOK_URL,
        "enable_ssl_verification": True,
        "push_events": False,
        "issues_events": True,
        "merge_requests_events": True,
    }
    hook.update(overrides)
    return hook


class GitLabServiceTestCase(unittest.TestCase):
    def setUp(self):
        from app.services.gitlab_service import GitLab

        self.store = make_store()
        self.transport = FakeTransport()
        self.service = make_service(GitLab, self.store, self.transport, url="https://gitlab.example", token="tok")

    def tearDown(self):
        self.store.db.close()


class GitLabConfigurationTests(GitLabServiceTestCase):
    def test_missing_url_and_token(self):
        from app.services.gitlab_service import GitLab

        service = make_service(GitLab, self.store, self.transport, token="tok")
        self.assertFalse(service.is_configured())
        self.assertEqual(service.config_error, "GitLab URL not set!")

        service = make_service(GitLab, self.store, self.transport, url="https://gitlab.example")
        self.assertFalse(service.is_configured())
        self.assertEqual(service.config_error, "Authentication token is missing!")
        self.assertEqual(self.transport.requests, [])

    def test_rejected_token(self):
        self.transport.fail("GET", f"{API}/user", 401, "401 Unauthorized")

        self.assertFalse(self.service.is_configured())
        self.assertIn("401", self.service.config_error)

    def test_require_configured_raises_configuration_error(self):
        from app.services.errors import ConfigurationError

        self.transport.fail("GET", f"{API}/user", 401, "401 Unauthorized")

        with self.assertRaises(ConfigurationError) as ctx:
            self.service.require_configured()
        self.assertIn("401", str(ctx.exception))

    def test_configured_user(self):
        self.transport.add("GET", f"{API}/user", {"name": "Ada", "web_url": "https://gitlab.example/ada"})

        self.assertTrue(self.service.is_configured())
        self.assertIsNone(self.service.config_error)
        self.assertEqual(self.service.get_user_string(), "Ada (https://gitlab.example/ada)")
        self.assertEqual(self.transport.requests[0].headers["PRIVATE-TOKEN"], "tok")

    def test_load_config_prefers_stored_values(self):
        from app.services.gitlab_service import GitLab
        from helpers import make_settings

        settings = make_settings(gitlab_url="https://env.example", gitlab_token="env-token")
        self.assertEqual(GitLab.load_config(self.store, settings).url, "https://env.example")

        saved = GitLab.handle_authorization(self.store, {"url": " https://stored.example/ ", "token": ""})
        config = GitLab.load_config(self.store, settings)

        self.assertEqual(saved, ["url"])
        self.assertEqual(config.url, "https://stored.example")
        self.assertEqual(config.token, "env-token")
        self.assertEqual(config.webhook_url, WEBHOOK_URL)


class GitLabIssueTests(GitLabServiceTestCase):
    def test_retrieve_issue_maps_fields(self):
        from app.services.issue import Issue, IssueType, Label

        self.transport.add(
            "GET",
            f"{PROJECT}/issues/12",
            _issue(
                12,
                milestone={"title": "v1.0", "due_date": "2025-03-01"},
                assignee={"name": "Ada", "avatar_url": "https://gitlab.example/ada.png"},
            ),
        )
        self.transport.add("GET", f"{PROJECT}/labels?per_page=100", [{"name": "bug", "color": "#d9534f"}])

        issue = Issue.get_instance(self.store, "gitlab", "group/app", 12)
        issue.get_from_service(self.service)

        self.assertEqual(issue.summary, "Issue 12")
        self.assertEqual(issue.status, "opened")
        self.assertEqual(issue.type, IssueType.BUG)
        self.assertEqual(issue.labels, [Label("bug", "#d9534f"), Label("ui")])
        self.assertEqual(issue.versions, ["v1.0"])
        self.assertEqual(issue.duedate.isoformat(), "2025-03-01")
        self.assertEqual(issue.assignee.name, "Ada")
        self.assertTrue(issue.in_db)
        self.assertEqual(issue.get_issue_url(self.service), "https://gitlab.example/group/app/issues/12")

    def test_issue_due_date_without_milestone(self):
        from app.services.issue import Issue

        self.transport.add("GET", f"{PROJECT}/issues/3", _issue(3, due_date="2025-05-05"))
        self.transport.add("GET", f"{PROJECT}/labels?per_page=100", [])

        issue = Issue.get_instance(self.store, "gitlab", "group/app", 3)
        self.service.retrieve_issue(issue)

        self.assertEqual(issue.duedate.isoformat(), "2025-05-05")
        self.assertEqual(issue.versions, [])

    def test_missing_milestone_keeps_stored_value(self):
        from app.services.issue import Issue

        issue = Issue.get_instance(self.store, "gitlab", "group/app", 3)
        issue.versions = ["v0.9"]
        self.transport.add("GET", f"{PROJECT}/issues/3", _issue(3))
        self.transport.add("GET", f"{PROJECT}/labels?per_page=100", [])

        self.service.retrieve_issue(issue)

        self.assertEqual(issue.versions, ["v0.9"])

    def test_retrieve_issue_is_idempotent(self):
        from app.models import IssueRecord
        from app.services.issue import Issue

        self.transport.add("GET", f"{PROJECT}/issues/12", _issue(12))
        self.transport.add("GET", f"{PROJECT}/labels?per_page=100", [])

        issue = Issue.get_instance(self.store, "gitlab", "group/app", 12)
        issue.get_from_service(self.service)
        first = issue.to_dict()
        issue.get_from_service(self.service)

        self.assertEqual(issue.to_dict(), first)
        self.assertEqual(self.store.db.query(IssueRecord).count(), 1)

    def test_missing_title_is_a_mapping_error(self):
        from app.services.errors import MappingError
        from app.services.issue import Issue

        self.transport.add("GET", f"{PROJECT}/issues/5", _issue(5, title=""))

        issue = Issue.get_instance(self.store, "gitlab", "group/app", 5)
        with self.assertRaises(MappingError):
            issue.get_from_service(self.service)
        self.assertEqual(issue.summary, "")
        self.assertIsNone(self.store.get_issue_row(issue.key))

    def test_malformed_field_leaves_issue_untouched(self):
        from app.services.errors import MappingError
        from app.services.issue import Issue

        issue = Issue.get_instance(self.store, "gitlab", "group/app", 5)
        issue.summary = "Cached"
        self.transport.add("GET", f"{PROJECT}/issues/5", _issue(5, due_date="soon"))

        with self.assertRaises(MappingError):
            self.service.retrieve_issue(issue)
        self.assertEqual(issue.summary, "Cached")
        self.assertIsNone(issue.updated)

    def test_merge_request_records_cross_references(self):
        from app.services.issue import Issue

        self.transport.add(
            "GET",
            f"{PROJECT}/merge_requests/4",
            _issue(4, title="Fix crash", description="Closes #12, see ABC-7", state="merged", labels=[]),
        )
        self.transport.add("GET", f"{PROJECT}/labels?per_page=100", [])

        mr = Issue.get_instance(self.store, "gitlab", "group/app", 4, True)
        mr.get_from_service(self.service)

        self.assertEqual(
            self.store.get_issue_issues(mr.key),
            [("gitlab", "group/app", "12"), ("jira", "ABC", "7")],
        )
        self.assertEqual(mr.get_issue_url(self.service), "https://gitlab.example/group/app/merge_requests/4")

    def test_transport_error_propagates(self):
        from app.services.errors import TransportError
        from app.services.issue import Issue

        self.transport.fail("GET", f"{PROJECT}/issues/99", 404, "404 Not found")

        issue = Issue.get_instance(self.store, "gitlab", "group/app", 99)
        with self.assertRaises(TransportError) as ctx:
            self.service.retrieve_issue(issue)
        self.assertEqual(ctx.exception.status_code, 404)
        self.assertIn("GitLab GET /projects/group%2Fapp/issues/99 failed", ctx.exception.message)

    def test_retrieve_all_issues_skips_invalid_items_and_estimates(self):
        query = "state=all&page=1&per_page=100"
        link = f'<{PROJECT}/issues?state=all&page=5&per_page=100>; rel="last"'
        self.transport.add("GET", f"{PROJECT}/issues?{query}", [_issue(1), _issue(2, state=None)], headers={"Link": link})
        self.transport.add(
            "GET",
            f"{PROJECT}/merge_requests?{query}",
            [_issue(3, description="Fixes #1", labels=[])],
        )

        page = self.service.retrieve_all_issues("group/app")

        self.assertEqual([(i.number, i.is_merge_request) for i in page.issues], [("1", False), ("3", True)])
        self.assertEqual(page.total_estimate, 501)
        self.assertEqual(self.service.get_total_issues_being_imported(), 501)
        self.assertEqual(page.cursor, 100)
        self.assertTrue(page.is_last_page)
        self.assertEqual(self.store.get_issue_issues(page.issues[1].key), [("gitlab", "group/app", "1")])

    def test_malformed_item_does_not_sink_page(self):
        from app.services.issue import IssueKey

        query = "state=all&page=1&per_page=100"
        self.transport.add("GET", f"{PROJECT}/issues?{query}", [_issue(1, updated_at="yesterday"), _issue(2)])
        self.transport.add("GET", f"{PROJECT}/merge_requests?{query}", [_issue(3, milestone={"due_date": "2025-01-01"})])

        page = self.service.retrieve_all_issues("group/app")

        self.assertEqual([i.number for i in page.issues], ["2"])
        self.assertIsNone(self.store.get_issue_row(IssueKey("gitlab", "group/app", "1")))
        self.assertIsNone(self.store.get_issue_row(IssueKey("gitlab", "group/app", "3", True)))

    def test_retrieve_all_issues_uses_cursor_as_page(self):
        query = "state=all&page=3&per_page=100"
        self.transport.add("GET", f"{PROJECT}/issues?{query}", [_issue(n) for n in range(1, 101)])
        self.transport.add("GET", f"{PROJECT}/merge_requests?{query}", [])

        page = self.service.retrieve_all_issues("group/app", cursor=200)

        self.assertEqual(len(page.issues), 100)
        self.assertEqual(page.cursor, 300)
        self.assertFalse(page.is_last_page)

    def test_parse_issue_syntax(self):
        issue = self.service.parse_issue_syntax("group/app!8")

        self.assertEqual(issue.service, "gitlab")
        self.assertEqual(issue.project, "group/app")
        self.assertEqual(issue.number, "8")
        self.assertTrue(issue.is_merge_request)
        self.assertEqual(self.service.get_project_issue_separator(True), "!")


class GitLabHookTests(GitLabServiceTestCase):
    def test_hook_discriminator_rejects_any_deviation(self):
        self.assertTrue(self.service.is_our_issue_hook(_our_hook()))
        for deviation in (
            {"url": "https://other.example/webhook"},
            {"enable_ssl_verification": False},
            {"push_events": True},
            {"issues_events": False},
            {"merge_requests_events": False},
        ):
            self.assertFalse(self.service.is_our_issue_hook(_our_hook(**deviation)), deviation)

    def test_repositories_with_hooks_and_errors(self):
        self.transport.add("GET", f"{API}/groups?per_page=100", [{"full_path": "group"}, {"full_path": "group/sub"}])
        self.transport.add(
            "GET",
            f"{API}/groups/group/projects?per_page=100",
            [
                {"path_with_namespace": "group/app", "name": "App"},
                {"path_with_namespace": "group/secret", "name": "Secret"},
                {"path_with_namespace": "group/plain", "name": "Plain"},
            ],
        )
        self.transport.add("GET", f"{PROJECT}/hooks?per_page=100", [_our_hook(3, push_events=True), _our_hook(7)])
        self.transport.fail("GET", f"{API}/projects/group%2Fsecret/hooks?per_page=100", 403, "403 Forbidden")
        self.transport.add("GET", f"{API}/projects/group%2Fplain/hooks?per_page=100", [])

        self.assertEqual(self.service.get_list_of_all_user_organisations(), {"group", "group/sub"})
        repos = self.service.get_list_of_all_repos_and_hooks("group")

        self.assertEqual([(r.full_name, r.hook_id, r.error) for r in repos], [
            ("group/app", "7", None),
            ("group/secret", None, 403),
            ("group/plain", None, None),
        ])

    def test_create_webhook_saves_secret_with_hook_id(self):
        self.transport.add("POST", f"{PROJECT}/hooks", {"id": 55}, status_code=201)

        body, status_code = self.service.create_webhook("group/app")

        self.assertEqual((body, status_code), ({"id": 55}, 201))
        sent = self.transport.calls("POST")[0].body
        self.assertEqual(sent["url"], WEBHOOK_URL)
        self.assertFalse(sent["push_events"])
        self.assertEqual(self.store.get_webhook_secrets("gitlab", "group/app"), [sent["token"]])
        self.assertEqual(self.store.get_webhooks("gitlab")[0].hook_id, "55")

    def test_failed_create_webhook_saves_nothing(self):
        self.transport.fail("POST", f"{PROJECT}/hooks", 403, "403 Forbidden")

        body, status_code = self.service.create_webhook("group/app")

        self.assertEqual(status_code, 403)
        self.assertIn("403 Forbidden", body)
        self.assertEqual(self.store.get_webhook_secrets("gitlab", "group/app"), [])

    def test_create_webhook_without_id_saves_nothing(self):
        self.transport.add("POST", f"{PROJECT}/hooks", {}, status_code=201)

        _, status_code = self.service.create_webhook("group/app")

        self.assertEqual(status_code, 502)
        self.assertEqual(self.store.get_webhook_secrets("gitlab", "group/app"), [])

    def test_delete_webhook(self):
        self.store.save_webhook("gitlab", "group/app", 55, "s")
        self.transport.add("DELETE", f"{PROJECT}/hooks/55", None, status_code=204)

        _, status_code = self.service.delete_webhook("group/app", "55")

        self.assertEqual(status_code, 204)
        self.assertEqual(self.store.get_webhook_secrets("gitlab", "group/app"), [])

    def test_failed_delete_keeps_secret(self):
        self.store.save_webhook("gitlab", "group/app", 55, "s")
        self.transport.fail("DELETE", f"{PROJECT}/hooks/55", 500)

        _, status_code = self.service.delete_webhook("group/app", "55")

        self.assertEqual(status_code, 500)
        self.assertEqual(self.store.get_webhook_secrets("gitlab", "group/app"), ["s"])


class GitLabWebhookTests(GitLabServiceTestCase):
    def _request(self, data, token="secret"):
        from app.services.webhook_router import WebhookRequest

        return WebhookRequest(headers={"X-Gitlab-Token": token}, body=json.dumps(data).encode())

    def _event(self, object_kind="issue", iid=12):
        return {
            "object_kind": object_kind,
            "event_type": object_kind,
            "project": {"path_with_namespace": "group/app"},
            "object_attributes": {"iid": iid},
        }

    def setUp(self):
        super().setUp()
        self.store.save_webhook("gitlab", "group/app", 1, "secret")

    def test_is_our_webhook(self):
        from app.services.gitlab_service import GitLab

        self.assertTrue(GitLab.is_our_webhook({"x-gitlab-token": "abc"}))
        self.assertFalse(GitLab.is_our_webhook({"X-GitHub-Event": "issues"}))

    def test_unknown_secret_is_rejected(self):
        result = self.service.validate_webhook(self._request(self._event(), token="wrong"))

        self.assertEqual((result.status_code, result.message), (403, "Token does not match!"))

    def test_token_for_another_project_is_rejected(self):
        self.store.save_webhook("gitlab", "group/other", 2, "other-secret")

        result = self.service.validate_webhook(self._request(self._event(), token="other-secret"))

        self.assertEqual(result.status_code, 403)

    def test_malformed_body(self):
        from app.services.webhook_router import WebhookRequest

        result = self.service.validate_webhook(WebhookRequest({"X-Gitlab-Token": "secret"}, b"not json"))
        self.assertEqual(result.status_code, 400)

        result = self.service.validate_webhook(self._request({"object_kind": "issue"}))
        self.assertEqual(result.status_code, 400)

    def test_push_event_is_not_acceptable(self):
        request = self._request(self._event("push"))

        self.assertIs(self.service.validate_webhook(request), True)
        result = self.service.handle_webhook(request)
        self.assertEqual((result.status_code, result.message), (406, "Invalid event type: push"))
        self.assertEqual(self.transport.requests, [])

    def test_issue_event_refreshes_issue(self):
        from app.services.issue import IssueKey

        self.transport.add("GET", f"{PROJECT}/merge_requests/4", _issue(4, labels=[]))
        self.transport.add("GET", f"{PROJECT}/labels?per_page=100", [])

        result = self.service.handle_webhook(self._request(self._event("merge_request", 4)))

        self.assertEqual((result.status_code, result.message), (200, "OK."))
        self.store.clear_cache()
        self.assertEqual(self.store.get_issue_row(IssueKey("gitlab", "group/app", "4", True)).summary, "Issue 4")

    def test_refresh_failure(self):
        self.transport.fail("GET", f"{PROJECT}/issues/12", 503, "unavailable")

        result = self.service.handle_webhook(self._request(self._event()))

        self.assertEqual(result.status_code, 502)
        self.assertIn("unavailable", result.message)

    def test_malformed_record_is_unprocessable(self):
        self.transport.add("GET", f"{PROJECT}/issues/12", _issue(12, updated_at="yesterday"))

        result = self.service.handle_webhook(self._request(self._event()))

        self.assertEqual(result.status_code, 422)
        self.assertIn("malformed", result.message)


if __name__ == "__main__":
    unittest.main()
