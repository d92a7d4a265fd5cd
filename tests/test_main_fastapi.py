import pytest
from unittest.mock import AsyncMock, patch
from fastapi.testclient import TestClient

from Code_Fixer import main_fastapi
from Code_Fixer.main_fastapi import app
from Code_Fixer.functions import begin_action, end_action
from conftest import agent_output

RUNNER = "Code_Fixer.functions.run_agent_with_token_limit"


@pytest.fixture
def store():
    """In-memory stand-in for the session table"""
    data = {}
    with patch.object(main_fastapi, "save_session_state", side_effect=lambda sid, state: data.__setitem__(sid, state) or True), \
         patch.object(main_fastapi, "load_session_state", side_effect=lambda sid: data.get(sid)), \
         patch.object(main_fastapi, "delete_session_state", side_effect=lambda sid: data.pop(sid, None) is not None):
        yield data


@pytest.fixture
def client(store):
    main_fastapi.sessions.clear()
    yield TestClient(app)
    main_fastapi.sessions.clear()


@pytest.fixture
def session_id(client):
    response = client.post("/api/v1/sessions")
    assert response.status_code == 200
    return response.json()["session_id"]


def upload(client, session_id, files):
    return client.post(f"/api/v1/sessions/{session_id}/files", json={"files": files})


FILES = [{"name": "A.py", "content": "code-A"}, {"name": "B.py", "content": "code-B"}]


class TestStatelessEndpoints:

    def test_root_and_health(self, client):
        assert client.get("/").json()["message"] == "Code Fixer API"
        assert client.get("/api/v1/health").json()["status"] == "healthy"

    def test_fix_code(self, client):
        output = agent_output({"correctedFiles": [{"name": "A.py", "correctedCode": "fixed-A"}], "explanation": "Fixed"})
        with patch(RUNNER, new=AsyncMock(return_value=output)):
            response = client.post("/api/v1/fix_code", json={"files": FILES, "errorMessage": "boom", "addDebugging": True})

        assert response.status_code == 200
        assert response.json() == {"correctedFiles": [{"name": "A.py", "correctedCode": "fixed-A"}], "explanation": "Fixed"}

    def test_fix_code_validation_skips_model(self, client):
        runner = AsyncMock()
        with patch(RUNNER, new=runner):
            response = client.post("/api/v1/fix_code", json={"files": FILES, "errorMessage": ""})

        assert response.status_code == 400
        assert response.json()["detail"] == "Error message cannot be empty."
        runner.assert_not_called()

    def test_fix_code_missing_explanation(self, client):
        with patch(RUNNER, new=AsyncMock(return_value=agent_output({"correctedFiles": []}))):
            response = client.post("/api/v1/fix_code", json={"files": FILES, "errorMessage": "boom"})

        assert response.status_code == 422
        assert "couldn't generate a fix" in response.json()["detail"]

    def test_fix_code_transport_failure(self, client):
        with patch(RUNNER, new=AsyncMock(side_effect=ConnectionError("down"))):
            response = client.post("/api/v1/fix_code", json={"files": FILES, "errorMessage": "boom"})

        assert response.status_code == 500
        assert response.json()["detail"] == "An unexpected error occurred while analyzing the code."

    def test_malformed_body_reports_first_violation(self, client):
        response = client.post("/api/v1/fix_code", json={"files": [{"name": "A.py"}], "errorMessage": "boom"})
        assert response.status_code == 422
        assert isinstance(response.json()["detail"], str)

    def test_generate_readme(self, client):
        with patch(RUNNER, new=AsyncMock(return_value=agent_output({"readme": "# Demo"}))):
            response = client.post("/api/v1/generate_readme", json={"files": FILES})
        assert response.json() == {"readme": "# Demo"}

    def test_generate_readme_requires_files(self, client):
        response = client.post("/api/v1/generate_readme", json={"files": []})
        assert response.status_code == 400
        assert response.json()["detail"] == "At least one file is required."

    def test_explain_error(self, client):
        output = agent_output({"correctedCode": "x = 1\nprint(x)", "explanation": "x was never assigned"})
        with patch(RUNNER, new=AsyncMock(return_value=output)):
            response = client.post("/api/v1/explain_error", json={"code": "print(x)", "errorMessage": "NameError"})
        assert response.status_code == 200
        assert response.json()["correctedCode"] == "x = 1\nprint(x)"

    def test_readme_review(self, client, tmp_path):
        readme = tmp_path / "README.md"
        with patch("Code_Fixer.functions.README_PATH", str(readme)):
            missing = client.get("/api/v1/readme/review").json()
            readme.write_text("# Existing", encoding="utf-8")
            found = client.get("/api/v1/readme/review").json()

        assert missing == {"readme": None, "error": "Could not read README.md. It may not exist yet."}
        assert found == {"readme": "# Existing", "error": None}


class TestSessionFiles:

    def test_upload_and_remove(self, client, session_id):
        response = upload(client, session_id, FILES)
        assert response.status_code == 200
        assert response.json()["files"] == ["A.py", "B.py"]
        assert response.json()["added"][0]["language"] == "python"

        response = client.delete(f"/api/v1/sessions/{session_id}/files/A.py")
        assert response.json()["files"] == ["B.py"]

        response = client.delete(f"/api/v1/sessions/{session_id}/files/A.py")
        assert response.status_code == 404

    def test_eleventh_file_rejected(self, client, session_id):
        upload(client, session_id, [{"name": f"f{i}.py", "content": "x"} for i in range(10)])

        response = upload(client, session_id, [{"name": "f10.py", "content": "x"}])

        assert response.status_code == 400
        assert response.json()["detail"] == "You can upload a maximum of 10 files."
        assert len(client.get(f"/api/v1/sessions/{session_id}").json()["files"]) == 10

    def test_unknown_session(self, client):
        assert client.get("/api/v1/sessions/missing").status_code == 404

    def test_session_reloads_from_store(self, client, session_id, store):
        upload(client, session_id, FILES)
        main_fastapi.sessions.clear()

        response = client.get(f"/api/v1/sessions/{session_id}")

        assert response.status_code == 200
        assert [f["name"] for f in response.json()["files"]] == ["A.py", "B.py"]

    def test_delete_session(self, client, session_id):
        assert client.delete(f"/api/v1/sessions/{session_id}").status_code == 200
        assert client.get(f"/api/v1/sessions/{session_id}").status_code == 404


    def test_least_recently_used_session_is_evicted(self, client, store):
        with patch.object(main_fastapi, "MAX_CACHED_SESSIONS", 2):
            first, second, third = [client.post("/api/v1/sessions").json()["session_id"] for _ in range(3)]

            assert list(main_fastapi.sessions) == [second, third]
            assert first in store

            response = client.get(f"/api/v1/sessions/{first}")

            assert response.status_code == 200
            assert list(main_fastapi.sessions) == [third, first]

class TestSessionFix:

    def fix(self, client, session_id, payload, error_message="boom"):
        with patch(RUNNER, new=AsyncMock(return_value=agent_output(payload))):
            return client.post(f"/api/v1/sessions/{session_id}/fix", json={"errorMessage": error_message})

    def test_fix_then_lookup_and_download(self, client, session_id):
        upload(client, session_id, [{"name": "script.py", "content": "print(x)"}, {"name": "Makefile", "content": "all:"}])
        response = self.fix(client, session_id, {
            "correctedFiles": [
                {"name": "script.py", "correctedCode": "x = 1\nprint(x)"},
                {"name": "ghost.py", "correctedCode": "boo"},
            ],
            "explanation": "Defined x",
        })
        assert response.status_code == 200

        lookup = client.get(f"/api/v1/sessions/{session_id}/files/script.py/corrected").json()
        assert lookup == {"name": "script.py", "correctedCode": "x = 1\nprint(x)", "changed": True}

        unchanged = client.get(f"/api/v1/sessions/{session_id}/files/Makefile/corrected").json()
        assert unchanged["correctedCode"] is None
        assert unchanged["changed"] is False

        assert client.get(f"/api/v1/sessions/{session_id}/files/ghost.py/corrected").status_code == 404

        download = client.get(f"/api/v1/sessions/{session_id}/files/script.py/download")
        assert download.text == "x = 1\nprint(x)"
        assert 'filename="script.fixed.py"' in download.headers["content-disposition"]

        assert client.get(f"/api/v1/sessions/{session_id}/files/Makefile/download").status_code == 404

    def test_fix_without_files(self, client, session_id):
        response = self.fix(client, session_id, {"correctedFiles": [], "explanation": "x"})
        assert response.status_code == 400
        assert response.json()["detail"] == "At least one file is required."

    def test_no_changes_needed(self, client, session_id):
        upload(client, session_id, FILES)
        response = self.fix(client, session_id, {"correctedFiles": [], "explanation": "Looks fine"})

        assert response.status_code == 200
        assert response.json()["correctedFiles"] == []

    def test_busy_fix_returns_conflict(self, client, session_id):
        upload(client, session_id, FILES)
        begin_action(session_id, "fix")
        try:
            response = self.fix(client, session_id, {"correctedFiles": [], "explanation": "x"})
        finally:
            end_action(session_id, "fix")

        assert response.status_code == 409

    def test_busy_fix_leaves_session_untouched(self, client, session_id):
        upload(client, session_id, FILES)
        self.fix(client, session_id, {"correctedFiles": [], "explanation": "x"}, error_message="first")
        begin_action(session_id, "fix")
        try:
            with patch(RUNNER, new=AsyncMock()):
                response = client.post(f"/api/v1/sessions/{session_id}/fix",
                                       json={"errorMessage": "second", "addDebugging": True})
        finally:
            end_action(session_id, "fix")

        assert response.status_code == 409
        summary = client.get(f"/api/v1/sessions/{session_id}").json()
        assert summary["error_message"] == "first"
        assert summary["flags"]["addDebugging"] is False

    def test_upload_during_fix_discards_result(self, client, session_id):
        upload(client, session_id, FILES)

        async def reupload_then_answer(agent, prompt, *args, **kwargs):
            state = main_fastapi.sessions[session_id]
            state.files.add_files([{"name": "A.py", "content": "new"}])
            state.reset_results()
            return agent_output({"correctedFiles": [{"name": "A.py", "correctedCode": "fixed-A"}], "explanation": "x"})

        with patch(RUNNER, new=AsyncMock(side_effect=reupload_then_answer)):
            response = client.post(f"/api/v1/sessions/{session_id}/fix", json={"errorMessage": "boom"})

        assert response.status_code == 409
        assert client.get(f"/api/v1/sessions/{session_id}").json()["correction"] is None
        assert main_fastapi.sessions[session_id].files.get("A.py").content == "new"
        assert client.get(f"/api/v1/sessions/{session_id}/files/A.py/download").status_code == 404

    def test_non_ascii_name_download(self, client, session_id):
        upload(client, session_id, [{"name": "cafÃ©.py", "content": "print(x)"}])
        self.fix(client, session_id, {"correctedFiles": [{"name": "cafÃ©.py", "correctedCode": "x = 1"}], "explanation": "x"})

        download = client.get(f"/api/v1/sessions/{session_id}/files/cafÃ©.py/download")

        assert download.status_code == 200
        assert download.text == "x = 1"
        disposition = download.headers["content-disposition"]
        assert "filename*=UTF-8''caf%C3%A9.fixed.py" in disposition
        assert 'filename="caf.fixed.py"' in disposition

    def test_failed_fix_releases_guard(self, client, session_id):
        upload(client, session_id, FILES)
        with patch(RUNNER, new=AsyncMock(side_effect=RuntimeError("boom"))):
            first = client.post(f"/api/v1/sessions/{session_id}/fix", json={"errorMessage": "boom"})
        second = self.fix(client, session_id, {"correctedFiles": [], "explanation": "ok"})

        assert first.status_code == 500
        assert second.status_code == 200

    def test_upload_clears_previous_correction(self, client, session_id):
        upload(client, session_id, FILES)
        self.fix(client, session_id, {"correctedFiles": [{"name": "A.py", "correctedCode": "fixed-A"}], "explanation": "x"})
        upload(client, session_id, [{"name": "C.py", "content": "c"}])

        assert client.get(f"/api/v1/sessions/{session_id}").json()["correction"] is None


class TestSessionReadme:

    def test_readme_uses_corrected_content(self, client, session_id):
        upload(client, session_id, FILES)
        with patch(RUNNER, new=AsyncMock(return_value=agent_output({
            "correctedFiles": [{"name": "A.py", "correctedCode": "fixed-A"}], "explanation": "x"
        }))):
            client.post(f"/api/v1/sessions/{session_id}/fix", json={"errorMessage": "boom"})

        runner = AsyncMock(return_value=agent_output({"readme": "# Demo"}))
        with patch(RUNNER, new=runner):
            response = client.post(f"/api/v1/sessions/{session_id}/readme")

        assert response.json() == {"readme": "# Demo"}
        prompt = runner.call_args.args[1]
        assert "fixed-A" in prompt
        assert "code-A" not in prompt
        assert "code-B" in prompt

        download = client.get(f"/api/v1/sessions/{session_id}/readme/download")
        assert download.text == "# Demo"
        assert 'filename="README.md"' in download.headers["content-disposition"]

    def test_removal_during_readme_discards_result(self, client, session_id):
        upload(client, session_id, FILES)

        async def remove_then_answer(agent, prompt, *args, **kwargs):
            state = main_fastapi.sessions[session_id]
            state.files.remove_file("B.py")
            state.reset_results()
            return agent_output({"readme": "# Stale"})

        with patch(RUNNER, new=AsyncMock(side_effect=remove_then_answer)):
            response = client.post(f"/api/v1/sessions/{session_id}/readme")

        assert response.status_code == 409
        assert client.get(f"/api/v1/sessions/{session_id}").json()["readme"] is None
        assert client.get(f"/api/v1/sessions/{session_id}/readme/download").status_code == 404

    def test_readme_download_before_generation(self, client, session_id):
        assert client.get(f"/api/v1/sessions/{session_id}/readme/download").status_code == 404

    def test_readme_semantic_failure(self, client, session_id):
        upload(client, session_id, FILES)
        with patch(RUNNER, new=AsyncMock(return_value=agent_output({"readme": ""}))):
            response = client.post(f"/api/v1/sessions/{session_id}/readme")
        assert response.status_code == 422
        assert response.json()["detail"] == "The AI couldn't generate a README. Please try again."
