"""
Unit tests for request validation, prompt construction and the
cache-first answer pipeline.
"""
from unittest.mock import Mock

import pytest

from answer_cache import AnswerCache
from conftest import FakeGenerator
from errors import CollaboratorError, MissingField, ValidationError
from pipeline import AnswerPipeline, GenerationRequest, JobInfo, build_prompt, validate
from prompts import ANSWER_PROMPTS, CURRENT_PROMPT_VERSION


class TestValidate:

    def test_valid_payload_without_job_info(self, valid_payload):
        request = validate(valid_payload)
        assert request.question == "Why do you want this job?"
        assert request.resume == "5 years Python, led 3 teams"
        assert request.job == JobInfo()

    def test_job_fields_are_mapped(self, valid_payload):
        request = validate({
            **valid_payload,
            "jobTitle": "Staff Engineer",
            "jobCompany": "Acme",
            "jobDescription": "Build APIs",
            "jobResponsibilities": "Mentor engineers",
        })
        assert request.job == JobInfo(
            title="Staff Engineer", company="Acme", description="Build APIs", responsibilities="Mentor engineers"
        )

    def test_null_job_fields_default_to_empty(self, valid_payload):
        request = validate({**valid_payload, "jobTitle": None})
        assert request.job.title == ""

    def test_missing_resume(self):
        with pytest.raises(MissingField) as exc:
            validate({"question": "Why us?"})
        assert str(exc.value) == "Resume text is required"
        assert exc.value.field == "resume"

    def test_missing_question(self):
        with pytest.raises(MissingField) as exc:
            validate({"resume": "Python"})
        assert str(exc.value) == "Question is required"
        assert exc.value.field == "question"

    def test_resume_checked_before_question(self):
        with pytest.raises(MissingField) as exc:
            validate({})
        assert exc.value.field == "resume"

    @pytest.mark.parametrize("blank", ["", "   ", "\n\t", None, 42, ["a"]])
    def test_blank_or_non_text_question_rejected(self, blank):
        with pytest.raises(MissingField):
            validate({"resume": "Python", "question": blank})

    def test_none_body_is_missing_resume(self):
        with pytest.raises(MissingField):
            validate(None)

    def test_non_object_body_rejected(self):
        with pytest.raises(ValidationError):
            validate(["resume", "question"])

    def test_non_string_job_field_rejected(self, valid_payload):
        with pytest.raises(ValidationError):
            validate({**valid_payload, "jobCompany": {"name": "Acme"}})


class TestBuildPrompt:

    def test_prompt_is_pure(self):
        request = GenerationRequest("Why us?", "Python dev", JobInfo(title="Engineer", company="Acme"))
        first = build_prompt(request)
        second = build_prompt(GenerationRequest("Why us?", "Python dev", JobInfo(title="Engineer", company="Acme")))
        assert first == second
        assert first.messages() == second.messages()

    def test_user_message_without_job_info(self, valid_payload):
        prompt = build_prompt(validate(valid_payload))
        assert prompt.user == "Question: Why do you want this job?\n\nMy Resume:\n5 years Python, led 3 teams"
        for label in ("Job Title", "Company", "Job Description", "Key Responsibilities", "applying for"):
            assert label not in prompt.user

    def test_job_lines_in_fixed_order_skipping_empty(self):
        request = GenerationRequest(
            "Why us?", "Python dev",
            JobInfo(title="Engineer", company="", description="Build APIs", responsibilities="Mentoring"),
        )
        prompt = build_prompt(request)
        assert prompt.user.endswith(
            "The role I am applying for:\n"
            "Job Title: Engineer\n"
            "Job Description: Build APIs\n"
            "Key Responsibilities: Mentoring"
        )
        assert "Company:" not in prompt.user

    def test_whitespace_only_job_field_is_skipped(self):
        prompt = build_prompt(GenerationRequest("Why us?", "Python dev", JobInfo(company="   ")))
        assert "Company" not in prompt.user

    def test_full_resume_is_kept(self):
        resume = "line\n" * 400
        prompt = build_prompt(GenerationRequest("Why us?", resume))
        assert resume in prompt.user

    def test_system_text_comes_from_prompt_table(self):
        prompt = build_prompt(GenerationRequest("Why us?", "Python dev"))
        assert prompt.version == CURRENT_PROMPT_VERSION
        assert prompt.system == ANSWER_PROMPTS[CURRENT_PROMPT_VERSION]["system"]
        assert "first person" in prompt.system
        assert "300 words" in prompt.system

    def test_messages_roles(self):
        messages = build_prompt(GenerationRequest("Why us?", "Python dev")).messages()
        assert [m["role"] for m in messages] == ["system", "user"]

    def test_older_version_still_renders(self):
        prompt = build_prompt(GenerationRequest("Why us?", "Python dev"), version="v1")
        assert prompt.system == ANSWER_PROMPTS["v1"]["system"]

    def test_unknown_version(self):
        with pytest.raises(ValueError):
            build_prompt(GenerationRequest("Why us?", "Python dev"), version="v999")


class TestAnswerPipeline:

    def test_run_returns_answer(self, pipeline, generator, valid_payload):
        assert pipeline.run(valid_payload) == {"answer": generator.answer}
        assert generator.call_count == 1

    def test_generator_receives_prompt_messages(self, pipeline, generator, valid_payload):
        pipeline.run(valid_payload)
        assert generator.calls[0] == build_prompt(validate(valid_payload)).messages()

    def test_identical_requests_call_generator_once(self, pipeline, generator, valid_payload):
        first = pipeline.run(valid_payload)
        second = pipeline.run(dict(valid_payload))
        assert first == second
        assert generator.call_count == 1

    def test_expired_answer_is_regenerated(self, pipeline, generator, fake_clock, valid_payload):
        pipeline.run(valid_payload)
        fake_clock.advance(3600)
        pipeline.run(valid_payload)
        assert generator.call_count == 2

    def test_different_job_info_is_a_miss(self, pipeline, generator, valid_payload):
        pipeline.run(valid_payload)
        pipeline.run({**valid_payload, "jobCompany": "Acme"})
        assert generator.call_count == 2

    def test_answer_is_trimmed_before_caching(self, cache):
        pipeline = AnswerPipeline(cache, FakeGenerator(answer="  I ship.\n\n"))
        assert pipeline.run({"question": "Q", "resume": "R"}) == {"answer": "I ship."}
        assert cache.get(cache.key(validate({"question": "Q", "resume": "R"}))) == "I ship."

    def test_validation_happens_before_cache_and_generator(self):
        cache = Mock(spec=AnswerCache)
        generator = FakeGenerator()
        pipeline = AnswerPipeline(cache, generator)

        with pytest.raises(ValidationError):
            pipeline.run({"question": "Why us?"})

        cache.key.assert_not_called()
        cache.get.assert_not_called()
        assert generator.call_count == 0

    def test_collaborator_failure_is_not_cached(self, cache, rate_limited_error, valid_payload):
        generator = FakeGenerator(outcomes=[rate_limited_error, "Second try answer"])
        pipeline = AnswerPipeline(cache, generator)

        with pytest.raises(CollaboratorError) as exc:
            pipeline.run(valid_payload)
        assert exc.value.status_code == 429
        assert cache.size() == 0

        assert pipeline.run(valid_payload) == {"answer": "Second try answer"}
        assert generator.call_count == 2

    def test_empty_generation_is_an_error(self, cache, valid_payload):
        pipeline = AnswerPipeline(cache, FakeGenerator(answer="   "))
        with pytest.raises(CollaboratorError):
            pipeline.run(valid_payload)
        assert cache.size() == 0

    def test_unknown_prompt_version_rejected(self, cache, generator):
        with pytest.raises(ValueError):
            AnswerPipeline(cache, generator, prompt_version="nope")
