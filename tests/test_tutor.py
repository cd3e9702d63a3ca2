"""
Tests for the tutor assistant and the Ollama client.

Run with: pytest tests/test_tutor.py -v
"""
import pytest
import requests

from conftest import FakeLLM


class TestTutorAssistant:
    """Material-grounded tutor replies."""

    @pytest.fixture
    def session_id(self, grade_repo, exam_id):
        return grade_repo.create_session(exam_id, "student-1")

    def make_tutor(self, llm, exam_repo, grade_repo, materials=None):
        from exam_tutor.retrieval import ContextBuilder
        from exam_tutor.tutor import TutorAssistant

        builder = ContextBuilder(material_loader=lambda _: list(materials or []))
        return TutorAssistant(llm, builder, exam_repo, grade_repo)

    def test_reply_stores_both_turns(self, exam_repo, grade_repo, session_id):
        llm = FakeLLM(chat_reply="Price is where supply meets demand.")
        materials = [{"url": "u1", "text": "Market price is set by supply and demand", "file_name": "l1.pdf"}]
        tutor = self.make_tutor(llm, exam_repo, grade_repo, materials)

        reply = tutor.reply(session_id, 0, "How is market price set?")

        assert reply.text == "Price is where supply meets demand."
        assert reply.grounded
        assert grade_repo.get_messages(session_id, 0) == [
            {"role": "user", "content": "How is market price set?"},
            {"role": "ai", "content": "Price is where supply meets demand."},
        ]

    def test_prompt_carries_question_and_material(self, exam_repo, grade_repo, session_id):
        llm = FakeLLM()
        materials = [{"url": "u1", "text": "Market price is set by supply and demand", "file_name": "l1.pdf"}]

        self.make_tutor(llm, exam_repo, grade_repo, materials).reply(session_id, 0, "market price?")

        system_prompt = llm.chat_calls[0]["system_prompt"]
        assert "How is price determined in a competitive market?" in system_prompt
        assert "l1.pdf" in system_prompt
        assert "Accuracy" in system_prompt

    def test_history_is_sent(self, exam_repo, grade_repo, session_id):
        llm = FakeLLM()
        tutor = self.make_tutor(llm, exam_repo, grade_repo)

        tutor.reply(session_id, 0, "First question")
        tutor.reply(session_id, 0, "Second question")

        sent = llm.chat_calls[1]["messages"]
        assert [m["role"] for m in sent] == ["user", "ai", "user"]
        assert sent[-1]["content"] == "Second question"

    def test_questions_keep_separate_history(self, exam_repo, grade_repo, session_id):
        llm = FakeLLM()
        tutor = self.make_tutor(llm, exam_repo, grade_repo)

        tutor.reply(session_id, 0, "About question one")
        tutor.reply(session_id, 1, "About question two")

        assert len(llm.chat_calls[1]["messages"]) == 1

    def test_no_material_notice(self, exam_repo, grade_repo, session_id):
        from exam_tutor.prompts import NO_MATERIAL_NOTICE

        llm = FakeLLM()
        reply = self.make_tutor(llm, exam_repo, grade_repo).reply(session_id, 0, "Anything?")

        assert not reply.grounded
        assert NO_MATERIAL_NOTICE in llm.chat_calls[0]["system_prompt"]

    def test_empty_llm_reply_falls_back(self, exam_repo, grade_repo, session_id):
        from exam_tutor.tutor import FALLBACK_REPLY

        reply = self.make_tutor(FakeLLM(chat_reply="  "), exam_repo, grade_repo).reply(session_id, 0, "Hello?")

        assert reply.text == FALLBACK_REPLY

    def test_llm_failure_keeps_user_turn(self, exam_repo, grade_repo, session_id):
        tutor = self.make_tutor(FakeLLM(chat_reply=RuntimeError("Failed after 2 attempts")), exam_repo, grade_repo)

        with pytest.raises(RuntimeError):
            tutor.reply(session_id, 0, "Is tax included?")

        assert grade_repo.get_messages(session_id, 0) == [{"role": "user", "content": "Is tax included?"}]

    def test_blank_message_rejected(self, exam_repo, grade_repo, session_id):
        from exam_tutor.errors import ExamTutorError

        with pytest.raises(ExamTutorError):
            self.make_tutor(FakeLLM(), exam_repo, grade_repo).reply(session_id, 0, "   ")

    def test_unknown_session(self, exam_repo, grade_repo):
        from exam_tutor.errors import SessionNotFound

        with pytest.raises(SessionNotFound):
            self.make_tutor(FakeLLM(), exam_repo, grade_repo).reply("missing", 0, "Hello?")


class FakeResponse:

    def __init__(self, payload=None, status_code=200, lines=None):
        self.payload = payload or {}
        self.status_code = status_code
        self.lines = lines or []

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload

    def iter_lines(self):
        return iter(self.lines)


class TestOllamaClient:
    """Request shapes and retry behaviour, with requests stubbed out."""

    @pytest.fixture
    def posts(self, monkeypatch):
        calls = []
        responses = []

        def fake_post(url, json=None, timeout=None, stream=False):
            calls.append({"url": url, "json": json, "stream": stream})
            response = responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response

        monkeypatch.setattr(requests, "post", fake_post)
        return calls, responses

    @pytest.fixture
    def client(self):
        from exam_tutor.llm import OllamaClient

        return OllamaClient(
            base_url="http://ollama.test/", model="gemma3:4b",
            max_retries=2, retry_delay=0, verify_connection=False
        )

    def test_generate_json_mode(self, client, posts):
        calls, responses = posts
        responses.append(FakeResponse({"response": '{"score": 80}'}))

        text = client.generate("Grade this", system_prompt="You are an examiner", json_mode=True)

        assert text == '{"score": 80}'
        payload = calls[0]["json"]
        assert calls[0]["url"] == "http://ollama.test/api/generate"
        assert payload["format"] == "json"
        assert payload["system"] == "You are an examiner"
        assert payload["stream"] is False

    def test_chat_maps_roles(self, client, posts):
        calls, responses = posts
        responses.append(FakeResponse({"message": {"role": "assistant", "content": "No tax."}}))

        text = client.chat(
            [{"role": "user", "content": "Tax?"}, {"role": "ai", "content": "Which tax?"}],
            system_prompt="Tutor rules"
        )

        assert text == "No tax."
        assert [m["role"] for m in calls[0]["json"]["messages"]] == ["system", "user", "assistant"]

    def test_retries_then_raises(self, client, posts):
        calls, responses = posts
        responses.extend([requests.Timeout("slow"), requests.ConnectionError("down")])

        with pytest.raises(RuntimeError, match="Failed after 2 attempts"):
            client.generate("Grade this")

        assert len(calls) == 2

    def test_retry_recovers(self, client, posts):
        _, responses = posts
        responses.extend([FakeResponse(status_code=500), FakeResponse({"response": "ok"})])

        assert client.generate("Grade this") == "ok"

    def test_streaming_joins_chunks(self, client, posts):
        calls, responses = posts
        responses.append(FakeResponse(lines=[
            b'{"response": "Supply ", "done": false}',
            b'',
            b'not json',
            b'{"response": "and demand", "done": true}',
        ]))

        assert client.generate("Explain", stream=True) == "Supply and demand"
        assert calls[0]["stream"] is True

    def test_connection_check_failure(self, monkeypatch):
        from exam_tutor.llm import OllamaClient

        def refuse(url, timeout=None):
            raise requests.ConnectionError("refused")

        monkeypatch.setattr(requests, "get", refuse)

        with pytest.raises(ConnectionError):
            OllamaClient(base_url="http://ollama.test")
