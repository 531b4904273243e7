import json
import logging
import unittest

from helpers import FakeTransport, make_session_factory, make_settings

logging.disable(logging.CRITICAL)

API = "https://gitlab.example/api/v4"
PROJECT = f"{API}/projects/group%2Fapp"


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        from fastapi.testclient import TestClient

        from app.api.deps import get_settings, get_transports
        from app.main import app
        from app.models.base import get_db
        from app.services.store import IssueStore

        self.session_factory = make_session_factory()
        self.db = self.session_factory()
        self.store = IssueStore(self.db)
        self.store.save_key_value_pair("gitlab_url", "https://gitlab.example")
        self.store.save_key_value_pair("gitlab_token", "tok")

        self.transports = {name: FakeTransport() for name in ("gitlab", "github", "jira", "bitbucket")}
        self.gitlab = self.transports["gitlab"]
        self.gitlab.add("GET", f"{API}/user", {"name": "Ada", "web_url": "https://gitlab.example/ada"})

        def override_get_db():
            db = self.session_factory()
            try:
                yield db
            finally:
                db.close()

        self.app = app
        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_transports] = lambda: self.transports
        app.dependency_overrides[get_settings] = lambda: make_settings()
        self.client = TestClient(app)

    def tearDown(self):
        self.app.dependency_overrides.clear()
        self.db.close()

    def _issue(self, iid, **overrides):
        data = {"iid": iid, "title": f"Issue {iid}", "description": "", "state": "opened", "labels": []}
        data.update(overrides)
        return data


class HealthTests(ApiTestCase):
    def test_health(self):
        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "healthy")


class ServicesApiTests(ApiTestCase):
    def test_list_services(self):
        response = self.client.get("/api/services/")

        self.assertEqual(response.status_code, 200)
        services = {item["id"]: item for item in response.json()}
        self.assertEqual(set(services), {"gitlab", "github", "jira", "bitbucket"})
        self.assertTrue(services["gitlab"]["configured"])
        self.assertEqual(services["gitlab"]["user"], "Ada (https://gitlab.example/ada)")
        self.assertFalse(services["github"]["configured"])
        self.assertEqual(services["github"]["error"], "Authentication token is missing!")

    def test_update_config(self):
        self.transports["github"].add("GET", "https://api.github.com/user", {"login": "octo", "html_url": "h"})

        response = self.client.put("/api/services/github/config", json={"token": "ghp"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["saved"], ["token"])
        self.assertTrue(response.json()["configured"])
        self.assertEqual(self.store.get_key_value("github_token"), "ghp")

    def test_unknown_service(self):
        self.assertEqual(self.client.get("/api/services/trac/organisations").status_code, 404)

    def test_unconfigured_service_conflict(self):
        response = self.client.get("/api/services/jira/organisations")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["detail"], "Jira URL not set!")

    def test_organisations_and_repositories(self):
        self.gitlab.add("GET", f"{API}/groups?per_page=100", [{"full_path": "group"}])
        self.gitlab.add("GET", f"{API}/groups/group/projects?per_page=100", [{"path_with_namespace": "group/app", "name": "App"}])
        self.gitlab.fail("GET", f"{PROJECT}/hooks?per_page=100", 403)

        self.assertEqual(self.client.get("/api/services/gitlab/organisations").json(), ["group"])
        response = self.client.get("/api/services/gitlab/repos", params={"organisation": "group"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            [{"full_name": "group/app", "display_name": "App", "hook_id": None, "error": 403}],
        )

    def test_create_list_and_delete_webhook(self):
        self.gitlab.add("POST", f"{PROJECT}/hooks", {"id": 55}, status_code=201)
        self.gitlab.add("DELETE", f"{PROJECT}/hooks/55", None, status_code=204)

        response = self.client.post("/api/services/gitlab/webhooks", json={"project": "group/app"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["hook"], {"id": 55})

        hooks = self.client.get("/api/services/gitlab/webhooks").json()
        self.assertEqual([(h["project"], h["hook_id"]) for h in hooks], [("group/app", "55")])
        self.assertNotIn("secret", hooks[0])

        response = self.client.delete("/api/services/gitlab/webhooks/55", params={"project": "group/app"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get("/api/services/gitlab/webhooks").json(), [])

    def test_create_webhook_failure(self):
        self.gitlab.fail("POST", f"{PROJECT}/hooks", 403, "403 Forbidden")

        response = self.client.post("/api/services/gitlab/webhooks", json={"project": "group/app"})

        self.assertEqual(response.status_code, 403)
        self.assertEqual(self.store.get_webhooks("gitlab"), [])


class WebhookApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.store.save_webhook("gitlab", "group/app", 55, "secret")

    def _post(self, data, headers):
        return self.client.post("/webhook", content=json.dumps(data).encode(), headers=headers)

    def test_issue_event(self):
        self.gitlab.add("GET", f"{PROJECT}/issues/12", self._issue(12))
        self.gitlab.add("GET", f"{PROJECT}/labels?per_page=100", [])
        event = {"object_kind": "issue", "project": {"path_with_namespace": "group/app"}, "object_attributes": {"iid": 12}}

        response = self._post(event, {"X-Gitlab-Token": "secret"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.text, "OK.")

    def test_rejections(self):
        event = {"object_kind": "push", "project": {"path_with_namespace": "group/app"}}

        self.assertEqual(self._post(event, {"X-Gitlab-Token": "nope"}).status_code, 403)
        self.assertEqual(self._post(event, {"X-Gitlab-Token": "secret"}).status_code, 406)
        response = self._post(event, {"X-Unknown": "1"})
        self.assertEqual((response.status_code, response.text), (400, "Unrecognized webhook"))


class IssuesApiTests(ApiTestCase):
    def test_issue_is_fetched_once_then_served_from_cache(self):
        self.gitlab.add("GET", f"{PROJECT}/issues/12", self._issue(12, labels=["bug"]))
        self.gitlab.add("GET", f"{PROJECT}/labels?per_page=100", [{"name": "bug", "color": "#ff0000"}])

        response = self.client.get("/api/issues/gitlab", params={"key": "group/app#12"})
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["key"], "group/app#12")
        self.assertEqual(data["type"], "bug")
        self.assertEqual(data["labels"], [{"name": "bug", "color": "#ff0000"}])
        self.assertEqual(data["url"], "https://gitlab.example/group/app/issues/12")

        requests_made = len(self.gitlab.requests)
        self.assertEqual(self.client.get("/api/issues/gitlab", params={"key": "group/app#12"}).status_code, 200)
        self.assertEqual(len(self.gitlab.requests), requests_made)

    def test_missing_remote_issue(self):
        self.gitlab.fail("GET", f"{PROJECT}/issues/13", 404, "404 Not found")

        self.assertEqual(self.client.get("/api/issues/gitlab", params={"key": "group/app#13"}).status_code, 404)

    def test_invalid_syntax(self):
        self.assertEqual(self.client.get("/api/issues/gitlab", params={"key": "group/app"}).status_code, 400)

    def test_links(self):
        from app.services.crossref import CrossReference
        from app.services.issue import Issue

        mr = Issue.get_instance(self.store, "gitlab", "group/app", 4, True)
        self.store.save_issue_issues(mr, [CrossReference("jira", "ABC", "7")])

        response = self.client.get("/api/issues/gitlab/links", params={"key": "group/app!4"})

        self.assertEqual(response.json(), [{"service": "jira", "project": "ABC", "issue_id": "7"}])


class ImportsApiTests(ApiTestCase):
    def test_trigger_and_logs(self):
        query = "state=all&page=1&per_page=100"
        self.gitlab.add("GET", f"{PROJECT}/issues?{query}", [self._issue(1), self._issue(2)])
        self.gitlab.add("GET", f"{PROJECT}/merge_requests?{query}", [])

        response = self.client.post("/api/imports/gitlab/trigger", json={"project": "group/app"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "success")
        self.assertEqual(response.json()["imported"], 2)

        logs = self.client.get("/api/imports/logs", params={"service": "gitlab"}).json()
        self.assertEqual(len(logs), 1)
        self.assertEqual(logs[0]["status"], "success")
        self.assertEqual(logs[0]["project"], "group/app")

    def test_malformed_item_does_not_fail_import(self):
        query = "state=all&page=1&per_page=100"
        self.gitlab.add("GET", f"{PROJECT}/issues?{query}", [self._issue(1, updated_at="yesterday"), self._issue(2)])
        self.gitlab.add("GET", f"{PROJECT}/merge_requests?{query}", [])

        response = self.client.post("/api/imports/gitlab/trigger", json={"project": "group/app"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["imported"], 1)

    def test_unknown_service(self):
        response = self.client.post("/api/imports/trac/trigger", json={"project": "x"})

        self.assertEqual(response.status_code, 404)


if __name__ == "__main__":
    unittest.main()
