"""Tests for turning free-text feedback into plan edits."""

import json
from pathlib import Path

import pytest

from foldwise.core.backend import BackendError, BackendErrorKind
from foldwise.core.errors import FrozenPlanError
from foldwise.core.feedback import (
    FEEDBACK_SYSTEM_PROMPT,
    PLAN_LINE_LIMIT,
    describe_plan,
    parse_edits,
    refine_with_feedback,
)
from foldwise.core.planner import MoveFile, RelabelDirectory, build_plan

from .conftest import FakeBackend, UnreachableBackend, result_for

ROOT = Path("/data")


@pytest.fixture
def plan():
    return build_plan(
        [
            result_for(ROOT / "a.pdf", "invoice.pdf", ["documents"]),
            result_for(ROOT / "b.jpg", "beach.jpg", ["images"]),
            result_for(ROOT / "c.txt", "c.txt", ["documents"]),
        ]
    )


def _reply(*edits):
    return json.dumps({"edits": list(edits)})


class TestDescribePlan:
    def test_lists_destinations_with_original_names(self, plan):
        listing = describe_plan(plan).splitlines()

        assert "documents/invoice.pdf  (was: a.pdf)" in listing
        assert "documents/c.txt" in listing
        assert "images/beach.jpg  (was: b.jpg)" in listing

    def test_long_plans_are_cut_off(self):
        results = [
            result_for(ROOT / f"f{i:04d}.txt", f"f{i:04d}.txt", ["documents"])
            for i in range(PLAN_LINE_LIMIT + 5)
        ]

        listing = describe_plan(build_plan(results)).splitlines()

        assert len(listing) == PLAN_LINE_LIMIT + 1
        assert listing[-1] == "... and 5 more file(s)"


class TestParseEdits:
    def test_both_edit_kinds(self):
        edits, malformed = parse_edits(
            _reply(
                {"action": "move", "file": "images/beach.jpg", "to": "photos/beach.jpg"},
                {"action": "rename", "directory": "documents", "label": "papers"},
            )
        )

        assert edits == [MoveFile("images/beach.jpg", "photos/beach.jpg"), RelabelDirectory("documents", "papers")]
        assert malformed == []

    def test_fenced_reply(self):
        raw = "```json\n" + _reply({"action": "rename", "directory": "images", "label": "photos"}) + "\n```"

        edits, _ = parse_edits(raw)

        assert edits == [RelabelDirectory("images", "photos")]

    def test_malformed_items_are_reported(self):
        edits, malformed = parse_edits(
            _reply({"action": "delete", "file": "a.pdf"}, {"action": "move", "file": "a.pdf"}, "mv a b")
        )

        assert edits == []
        assert len(malformed) == 3

    @pytest.mark.parametrize("raw", ["not json", "[]", '{"changes": []}', ""])
    def test_unusable_reply(self, raw):
        with pytest.raises(BackendError) as exc_info:
            parse_edits(raw)

        assert exc_info.value.kind is BackendErrorKind.INVALID_RESPONSE


class TestRefineWithFeedback:
    """Test suite for refine_with_feedback()."""

    async def test_applies_suggested_edits(self, plan):
        before = plan.to_dict()
        backend = FakeBackend(
            replies=[
                _reply(
                    {"action": "move", "file": "documents/invoice.pdf", "to": "finance/invoice.pdf"},
                    {"action": "rename", "directory": "images", "label": "photos"},
                )
            ]
        )

        outcome = await refine_with_feedback(plan, "invoices go under finance, images are photos", backend)

        assert outcome.plan.to_dict() == {
            "documents": {"c.txt": "/data/c.txt"},
            "finance": {"invoice.pdf": "/data/a.pdf"},
            "photos": {"beach.jpg": "/data/b.jpg"},
        }
        assert len(outcome.applied) == 2
        assert outcome.rejected == []
        assert plan.to_dict() == before

        system, user = backend.completions[0]
        assert system == FEEDBACK_SYSTEM_PROMPT
        assert "documents/invoice.pdf  (was: a.pdf)" in user
        assert user.endswith("invoices go under finance, images are photos")

    async def test_rejected_edits_do_not_block_the_rest(self, plan):
        backend = FakeBackend(
            replies=[
                _reply(
                    {"action": "move", "file": "documents/missing.pdf", "to": "x/missing.pdf"},
                    {"action": "move", "file": "documents/c.txt", "to": "images/beach.jpg"},
                    {"action": "rename", "directory": "documents", "label": "papers"},
                    {"action": "shred", "file": "documents/c.txt"},
                )
            ]
        )

        outcome = await refine_with_feedback(plan, "tidy up", backend)

        assert outcome.applied == [RelabelDirectory("documents", "papers")]
        assert len(outcome.rejected) == 3
        assert "papers" in outcome.plan.to_dict()

    async def test_no_suggestions_keeps_the_plan(self, plan):
        outcome = await refine_with_feedback(plan, "looks fine", FakeBackend(replies=[_reply()]))

        assert outcome.plan is plan
        assert not outcome.changed

    async def test_blank_feedback_skips_the_backend(self, plan):
        backend = FakeBackend()

        outcome = await refine_with_feedback(plan, "   ", backend)

        assert outcome.plan is plan
        assert backend.completions == []

    async def test_backend_failure_propagates(self, plan):
        with pytest.raises(BackendError) as exc_info:
            await refine_with_feedback(plan, "move the photos", UnreachableBackend())

        assert exc_info.value.kind is BackendErrorKind.TRANSIENT_NETWORK

    async def test_frozen_plan_is_refused(self, plan):
        plan.freeze()

        with pytest.raises(FrozenPlanError):
            await refine_with_feedback(plan, "move the photos", FakeBackend(replies=[_reply()]))
