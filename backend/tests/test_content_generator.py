"""
Tests for the backlog generation boundary.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from services.content_generator import ContentGenerator, generate_backlog
from services.ticket_service import GeneratedNode


class StaticGenerator:
    def __init__(self, epics):
        self.epics = epics
        self.calls = []

    async def generate(self, text, instruction=None):
        self.calls.append((text, instruction))
        return self.epics


class TestGenerateBacklog:

    def test_any_object_with_generate_is_a_generator(self):
        assert isinstance(StaticGenerator([]), ContentGenerator)
        assert not isinstance(object(), ContentGenerator)

    @pytest.mark.asyncio
    async def test_generated_tree_is_stored(self):
        epics = [GeneratedNode(title="Onboarding", children=[GeneratedNode(title="Signup form")])]
        generator = StaticGenerator(epics)
        tickets = MagicMock()
        tickets.insert_tree = AsyncMock(return_value=["epic", "task"])

        created = await generate_backlog(generator, tickets, 7, "PRD text", "Keep it short")

        assert created == ["epic", "task"]
        assert generator.calls == [("PRD text", "Keep it short")]
        tickets.insert_tree.assert_awaited_once_with(7, epics)
