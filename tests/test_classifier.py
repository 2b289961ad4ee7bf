"""
Tests for the LLM classifier.
"""

from unittest.mock import MagicMock

import pytest

from src.outlook_triage.auth import DeviceCodeAuthRequired
from src.outlook_triage.classifier import TriageClassifier, parse_follow_up, parse_priority
from src.outlook_triage.completion import CompletionError
from src.outlook_triage.config import FollowUpUrgency
from src.outlook_triage.models import Email, EmailBody


@pytest.fixture
def settings():
    settings = MagicMock()
    settings.prompt_body_max_chars = 20000
    return settings


@pytest.fixture
def completion():
    return MagicMock()


@pytest.fixture
def classifier(settings, completion):
    return TriageClassifier(settings, completion)


def _email(subject="Quarterly order", content="<p>Can you confirm delivery?</p>", content_type="html"):
    return Email(
        id="e1",
        subject=subject,
        body=EmailBody(content_type=content_type, content=content),
    )


class TestParsePriority:
    """Tests for parse_priority."""

    @pytest.mark.parametrize("text", ["1", "2", "3", "4", "5"])
    def test_digits(self, text):
        """A single digit 1-5 is accepted."""
        assert parse_priority(text) == text

    @pytest.mark.parametrize("text", [" 2", "3\n", "4 "])
    def test_surrounding_whitespace_is_unknown(self, text):
        """The answer must be the bare digit with nothing around it."""
        assert parse_priority(text) == "Unknown"

    @pytest.mark.parametrize("text", ["", "0", "6", "Priority: 2", "2.", "12", None])
    def test_anything_else_is_unknown(self, text):
        """Everything else is Unknown."""
        assert parse_priority(text) == "Unknown"


class TestParseFollowUp:
    """Tests for parse_follow_up."""

    def test_json_with_urgency(self):
        """A valid JSON answer maps its urgency."""
        assert parse_follow_up('{"requires_response": true, "urgency": "Low"}') == FollowUpUrgency.LOW
        assert parse_follow_up('{"requires_response": true, "urgency": "high"}') == FollowUpUrgency.HIGH

    def test_json_no_response(self):
        """requires_response false means no follow-up."""
        assert parse_follow_up('{"requires_response": false, "urgency": null}') is None

    def test_json_missing_urgency_defaults_to_normal(self):
        """A required response without a usable urgency is Normal."""
        assert parse_follow_up('{"requires_response": true, "urgency": null}') == FollowUpUrgency.NORMAL
        assert parse_follow_up('{"requires_response": true, "urgency": "ASAP"}') == FollowUpUrgency.NORMAL

    def test_fenced_json(self):
        """Markdown code fences around the JSON are tolerated."""
        text = '```json\n{"requires_response": true, "urgency": "High"}\n```'
        assert parse_follow_up(text) == FollowUpUrgency.HIGH

    def test_text_scan_fallback(self):
        """Invalid JSON falls back to a lowercase text scan."""
        assert parse_follow_up("requires_response: TRUE, urgency: HIGH") == FollowUpUrgency.HIGH
        assert parse_follow_up("requires_response: true") == FollowUpUrgency.NORMAL
        assert parse_follow_up("requires_response: false") == FollowUpUrgency.NO_RESPONSE

    @pytest.mark.parametrize("text", ["true", "[true, \"High\"]", "\"High\"", "null"])
    def test_non_object_json_means_no_response(self, text):
        """Valid JSON that is not an object never requires a response."""
        assert parse_follow_up(text) is None


class TestTriageClassifier:
    """Tests for TriageClassifier."""

    def test_priority_prompt_contains_sanitized_body(self, classifier):
        """The prompt embeds the subject and the plain-text body."""
        prompt = classifier.build_priority_prompt(
            _email(content="<p>Need this today</p><script>track()</script>")
        )
        assert "Subject: Quarterly order" in prompt
        assert "Need this today" in prompt
        assert "track()" not in prompt
        assert "<p>" not in prompt

    def test_missing_subject_placeholder(self, classifier):
        """A blank subject is rendered as a placeholder."""
        prompt = classifier.build_follow_up_prompt(_email(subject=None))
        assert "Subject: (No Subject)" in prompt
        assert '"requires_response": true | false' in prompt

    def test_body_is_truncated(self, classifier, settings):
        """The body is truncated to the configured length."""
        settings.prompt_body_max_chars = 10
        prompt = classifier.build_priority_prompt(_email(content="x" * 50, content_type="text"))
        assert "x" * 10 in prompt
        assert "x" * 11 not in prompt

    def test_classify_priority(self, classifier, completion):
        """A clean digit answer is returned."""
        completion.complete.return_value = "2"
        assert classifier.classify_priority(_email()) == "2"
        completion.complete.assert_called_once()

    def test_classify_priority_with_chatter_is_unknown(self, classifier, completion):
        """Explanatory answers are not parsed for digits."""
        completion.complete.return_value = "The priority is 2"
        assert classifier.classify_priority(_email()) == "Unknown"

    def test_classify_priority_backend_failure_is_unknown(self, classifier, completion):
        """Backend failures degrade to Unknown."""
        completion.complete.side_effect = CompletionError("HTTP 502")
        assert classifier.classify_priority(_email()) == "Unknown"

    def test_classify_follow_up(self, classifier, completion):
        """JSON answers are parsed into an urgency."""
        completion.complete.return_value = '{"requires_response": true, "urgency": "Normal"}'
        assert classifier.classify_follow_up(_email()) == FollowUpUrgency.NORMAL

    def test_classify_follow_up_backend_failure(self, classifier, completion):
        """Backend failures degrade to no response required."""
        completion.complete.side_effect = CompletionError("timeout")
        assert classifier.classify_follow_up(_email()) == FollowUpUrgency.NO_RESPONSE

    def test_auth_required_propagates(self, classifier, completion):
        """Device-code prompts are not swallowed."""
        completion.complete.side_effect = DeviceCodeAuthRequired({"user_code": "X"})
        with pytest.raises(DeviceCodeAuthRequired):
            classifier.classify_priority(_email())

    def test_suggest_reply(self, classifier, completion):
        """The reply suggestion is stripped and returned."""
        completion.complete.return_value = "  Thanks, delivery is confirmed for Friday.\n"

        suggestion = classifier.suggest_reply("Delivery", "Latest\n\n> older", content_type="text")

        assert suggestion == "Thanks, delivery is confirmed for Friday."
        prompt = completion.complete.call_args.args[0]
        assert "Latest\n\n> older" in prompt

    def test_suggest_reply_empty_or_failed(self, classifier, completion):
        """Empty or failed suggestions return None."""
        completion.complete.return_value = "   "
        assert classifier.suggest_reply("s", "b") is None

        completion.complete.side_effect = CompletionError("down")
        assert classifier.suggest_reply("s", "b") is None
