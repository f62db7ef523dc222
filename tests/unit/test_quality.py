"""Tests for the story judge, rewriter and quality gate."""

import json

import pytest

from storyspec.memory.judge_rubric import GlobalConsistencyReport
from storyspec.memory.pipeline_state import StoryDocument
from storyspec.memory.story_structure import Item, StoryStructure
from storyspec.memory.system_context import SystemDiscoveryContext
from storyspec.services.iteration import OutcomeKind
from storyspec.services.quality import (
    QualityGate,
    StoryJudge,
    StoryRewriter,
    format_system_context,
)
from storyspec.services.quality.story_judge import parse_judge_rubric
from storyspec.services.story_renderer import to_markdown
from storyspec.utils.exceptions import JSONParseError, LLMConnectionError, ResponseValidationError


@pytest.fixture
def document() -> StoryDocument:
    structure = StoryStructure(
        title="Sign in",
        user_visible_behavior=[Item(id="UVB-001", text="User sees the login form")],
    )
    return StoryDocument(
        story_id="story-001",
        seed="Users sign in",
        structure=structure,
        markdown=to_markdown(structure),
    )


def make_gate(settings, registry, gateway) -> QualityGate:
    return QualityGate(settings, StoryJudge(gateway, registry), StoryRewriter(gateway, registry))


class TestFormatSystemContext:
    """Tests for format_system_context."""

    def test_lists_entries(self, context):
        """Components, states, events and vocabulary appear on labelled lines."""
        text = format_system_context(context)
        assert "COMP-LOGIN-BUTTON (Login Button)" in text
        assert "State models: C-STATE-SESSION" in text
        assert "Events: E-USER-LOGGED-IN" in text
        assert "Standard states: loading, error, empty, success" in text
        assert "sign in→Login Button" in text

    def test_empty_context(self):
        """A context with nothing but standard states still renders them."""
        text = format_system_context(SystemDiscoveryContext(timestamp=""))
        assert text == "Standard states: loading, error, empty, success"


class TestParseJudgeRubric:
    """Tests for parse_judge_rubric."""

    def test_parses(self, rubric):
        """Valid JSON becomes a rubric with averaged testability."""
        parsed = parse_judge_rubric(json.dumps(rubric(4.0)))
        assert parsed.overall_score == 4.0
        assert parsed.testability.score == 4.0

    def test_no_json(self):
        """Prose raises JSONParseError."""
        with pytest.raises(JSONParseError):
            parse_judge_rubric("Looks good to me!")

    def test_schema_mismatch(self):
        """JSON missing rubric fields raises ResponseValidationError."""
        with pytest.raises(ResponseValidationError):
            parse_judge_rubric('{"overallScore": 4}')

    def test_string_violations_are_wrapped(self, rubric):
        """Bare string violations become quotes."""
        payload = rubric(2.0)
        payload["sectionSeparation"]["violations"] = ["Implementation detail in UVB"]
        parsed = parse_judge_rubric(json.dumps(payload))
        assert parsed.violation_summaries == ["Implementation detail in UVB"]


class TestStoryJudge:
    """Tests for StoryJudge."""

    def test_judge_sends_rendered_prompt(self, scripted_gateway, registry, context, rubric):
        """The judge role is used and the story text reaches the prompt."""
        seen = {}

        def reply(system, user):
            seen["user"] = user
            return json.dumps(rubric(4.2))

        gateway = scripted_gateway({"judge": reply})
        result = StoryJudge(gateway, registry).judge("# Sign in story body", context)
        assert result.overall_score == 4.2
        assert "# Sign in story body" in seen["user"]
        assert "COMP-LOGIN-BUTTON" in seen["user"]

    def test_global_consistency_report(self, scripted_gateway, registry, context):
        """A valid report is parsed."""
        gateway = scripted_gateway(
            {
                "consistency": [
                    {
                        "issues": [{"description": "Term drift", "confidence": 0.9}],
                        "fixes": [
                            {
                                "type": "normalize-term-to-vocabulary",
                                "storyId": "story-001",
                                "path": "userVisibleBehavior",
                                "operation": "replace",
                                "item": {"id": "UVB-001", "text": "User sees the sign in form"},
                                "match": {"id": "UVB-001"},
                                "confidence": 0.9,
                            }
                        ],
                    }
                ]
            }
        )
        report = StoryJudge(gateway, registry).judge_global_consistency(
            {"story-001": "# A", "story-002": "# B"}, context
        )
        assert report.issues[0].description == "Term drift"
        assert report.fixes[0].story_id == "story-001"

    @pytest.mark.parametrize("reply", ["no json here", '{"fixes": [{"type": 5}]}'])
    def test_global_consistency_bad_output(self, scripted_gateway, registry, context, reply):
        """Bad output yields a single zero-confidence issue instead of raising."""
        gateway = scripted_gateway({"consistency": [reply]})
        judge = StoryJudge(gateway, registry)
        report = judge.judge_global_consistency({"story-001": "# A"}, context)
        assert len(report.issues) == 1
        assert report.issues[0].confidence == 0.0
        assert report.fixes == []
        assert isinstance(report, GlobalConsistencyReport)


class TestStoryRewriter:
    """Tests for StoryRewriter."""

    def test_returns_structure(self, scripted_gateway, registry, context, rubric, story_json):
        """Structured replies become success outcomes."""
        gateway = scripted_gateway({"rewriter": [story_json(title="Sign in again")]})
        judged = parse_judge_rubric(json.dumps(rubric(2.0)))
        outcome = StoryRewriter(gateway, registry).rewrite("# Sign in", judged, context)
        assert outcome.kind is OutcomeKind.SUCCESS
        assert outcome.structure.title == "Sign in again"


class TestQualityGate:
    """Tests for QualityGate.run."""

    def test_passes_without_rewrite(self, settings, registry, scripted_gateway, document, context, rubric):
        """A first score at or above threshold passes with no rewrite."""
        gateway = scripted_gateway({"judge": [rubric(3.5)]})
        outcome = make_gate(settings, registry, gateway).run(document, context)
        assert not outcome.needs_manual_review
        assert outcome.rewrites == 0
        assert outcome.final_score == 3.5

    def test_one_rewrite_then_manual_review(
        self, settings, registry, scripted_gateway, document, context, rubric, story_json
    ):
        """2.0, one rewrite, then 3.0: flagged with the final score and one rewrite."""
        gateway = scripted_gateway(
            {
                "judge": [rubric(2.0), rubric(3.0)],
                "rewriter": [story_json(behavior="User sees email and password fields")],
            }
        )
        outcome = make_gate(settings, registry, gateway).run(document, context)
        assert outcome.rewrites == 1
        assert outcome.needs_manual_review
        assert outcome.final_score == 3.0
        assert [r.overall_score for r in outcome.history] == [2.0, 3.0]
        assert "User sees email and password fields" in outcome.document.markdown
        assert gateway.send.call_count == 3

    def test_rewrite_fixes_story(
        self, settings, registry, scripted_gateway, document, context, rubric, story_json
    ):
        """A rewrite that lifts the score clears the flag."""
        gateway = scripted_gateway(
            {"judge": [rubric(2.0), rubric(4.0)], "rewriter": [story_json()]}
        )
        outcome = make_gate(settings, registry, gateway).run(document, context)
        assert outcome.rewrites == 1
        assert not outcome.needs_manual_review

    def test_rewrites_bounded(self, settings, registry, scripted_gateway, document, context, rubric, story_json):
        """The judge is never called more than max_rewrites + 1 times."""
        settings.max_rewrites = 2
        gateway = scripted_gateway(
            {
                "judge": [rubric(1.0), rubric(1.5), rubric(2.0)],
                "rewriter": [story_json(), story_json()],
            }
        )
        outcome = make_gate(settings, registry, gateway).run(document, context)
        assert outcome.rewrites == 2
        assert len(outcome.history) == 3
        assert outcome.needs_manual_review

    def test_zero_rewrites(self, settings, registry, scripted_gateway, document, context, rubric):
        """With max_rewrites 0 a low score is flagged immediately."""
        settings.max_rewrites = 0
        gateway = scripted_gateway({"judge": [rubric(1.0)]})
        outcome = make_gate(settings, registry, gateway).run(document, context)
        assert outcome.rewrites == 0
        assert outcome.needs_manual_review

    def test_unparseable_judgment(self, settings, registry, scripted_gateway, document, context):
        """Judge output that cannot be parsed routes to manual review."""
        gateway = scripted_gateway({"judge": ["I think it is fine"]})
        outcome = make_gate(settings, registry, gateway).run(document, context)
        assert outcome.needs_manual_review
        assert outcome.reason == "Judge output could not be parsed"
        assert outcome.final_score is None

    def test_refused_rewrite_keeps_story(self, settings, registry, scripted_gateway, document, context, rubric):
        """A refused rewrite leaves the previous version and flags the story."""
        before = document.markdown
        gateway = scripted_gateway({"judge": [rubric(2.0)], "rewriter": ["I cannot do that."]})
        outcome = make_gate(settings, registry, gateway).run(document, context)
        assert outcome.document.markdown == before
        assert outcome.needs_manual_review
        assert outcome.rewrites == 1

    def test_relationships_deduplicated_with_best_confidence(
        self, settings, registry, scripted_gateway, document, context, rubric, story_json
    ):
        """Relationships across judgments are merged; confidence is the best seen."""
        rel = {"id": "COMP-REMEMBER-ME", "type": "component", "operation": "add_node", "name": "Remember Me"}
        gateway = scripted_gateway(
            {
                "judge": [rubric(2.0, [{**rel, "confidence": 0.5}]), rubric(4.0, [{**rel, "confidence": 0.9}])],
                "rewriter": [story_json()],
            }
        )
        outcome = make_gate(settings, registry, gateway).run(document, context)
        relationships = outcome.relationships()
        assert len(relationships) == 1
        assert outcome.confidence(relationships[0]) == 0.9

    def test_unparseable_rejudge_restores_scored_version(
        self, settings, registry, scripted_gateway, document, context, rubric, story_json
    ):
        """A re-judge that cannot be parsed keeps the version the final score belongs to."""
        before = document.markdown
        gateway = scripted_gateway(
            {
                "judge": [rubric(2.0), "Looks better now"],
                "rewriter": [story_json(behavior="User sees email and password fields")],
            }
        )
        outcome = make_gate(settings, registry, gateway).run(document, context)
        assert outcome.document.markdown == before
        assert outcome.final_score == 2.0
        assert outcome.needs_manual_review
        assert outcome.reason.startswith("Re-judge unavailable")
        assert "kept the version scored 2.0" in outcome.reason
        assert len(outcome.history) == 1

    def test_rejudge_outage_keeps_history(
        self, settings, registry, scripted_gateway, document, context, rubric, story_json
    ):
        """Relationships from the first judgment survive a re-judge outage."""
        rel = {
            "id": "COMP-REMEMBER-ME",
            "type": "component",
            "operation": "add_node",
            "name": "Remember Me",
            "confidence": 0.9,
        }
        gateway = scripted_gateway(
            {
                "judge": [rubric(2.0, [rel]), LLMConnectionError("down", attempts=3)],
                "rewriter": [story_json()],
            }
        )
        outcome = make_gate(settings, registry, gateway).run(document, context)
        assert [r.id for r in outcome.relationships()] == ["COMP-REMEMBER-ME"]
        assert outcome.confidence(outcome.relationships()[0]) == 0.9
        assert outcome.final_score == 2.0
        assert outcome.reason.startswith("Re-judge unavailable: down")

    def test_rewriter_outage_keeps_story(
        self, settings, registry, scripted_gateway, document, context, rubric
    ):
        """A rewriter that cannot be reached leaves the judged story and its rubric."""
        before = document.markdown
        gateway = scripted_gateway(
            {"judge": [rubric(2.0)], "rewriter": [LLMConnectionError("rewriter down", attempts=3)]}
        )
        outcome = make_gate(settings, registry, gateway).run(document, context)
        assert outcome.document.markdown == before
        assert [r.overall_score for r in outcome.history] == [2.0]
        assert outcome.needs_manual_review
        assert outcome.reason.startswith("Rewrite unavailable: rewriter down")
        assert gateway.send.call_count == 2
