import asyncio

import pytest

from app.errors import UpstreamModelFailure
from app.knowledge.matcher import KnowledgeMatcher
from app.providers.mock import MockChatClient
from app.routing.filters import is_advice_request
from app.routing.router import ConversationRouter, is_end_chat
from app.search.base import NullSearchAugmenter, SearchAugmenter, SearchResult
from app.sessions.models import Session

TWO_RESULTS = [
    SearchResult("ELSS Funds Explained", "https://www.investonline.in/elss", "Tax saving funds with lock-in."),
    SearchResult("Tax Saving Options", "https://www.investonline.in/tax", "Section 80C options."),
]


class FixedSearch(SearchAugmenter):
    name = "fixed"

    def __init__(self, results, timeout=1.0):
        super().__init__(timeout=timeout)
        self.results = results
        self.queries = []

    async def _search(self, query, top_k):
        self.queries.append((query, top_k))
        return list(self.results)


class BrokenSearch(SearchAugmenter):
    async def _search(self, query, top_k):
        raise RuntimeError("index exploded")


class SlowSearch(SearchAugmenter):
    async def _search(self, query, top_k):
        await asyncio.sleep(1)
        return TWO_RESULTS


class SlowChat(MockChatClient):
    async def complete(self, messages, request_id=None):
        await asyncio.sleep(1)
        return "late"


def _router(flows, search=None, chat=None, **kwargs):
    return ConversationRouter(
        flows,
        KnowledgeMatcher(flows),
        search or NullSearchAugmenter(),
        chat or MockChatClient(reply="ELSS funds have a 3 year lock-in."),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_off_topic_refusal(flows):
    session = Session(id="s")
    result = await _router(flows).route(session, "What's the weather today?")

    assert result.stage == "off_topic"
    assert result.reply == flows.off_topic_reply
    assert result.suggested == list(flows.default_suggestions)
    assert [(t.role, t.text) for t in session.turns] == [
        ("user", "What's the weather today?"),
        ("bot", flows.off_topic_reply),
    ]


@pytest.mark.asyncio
async def test_off_topic_has_top_priority(flows):
    result = await _router(flows).route(Session(id="s"), "How do I register for cricket updates?")
    assert result.stage == "off_topic"
    assert result.reply == flows.off_topic_reply


@pytest.mark.asyncio
async def test_advice_request_redirects(flows):
    result = await _router(flows).route(Session(id="s"), "Should I invest in XYZ fund?")
    assert result.stage == "advice"
    assert "Research Assistant" in result.reply
    assert result.suggested == ["Open Research Assistant", "General info about SIP"]


@pytest.mark.asyncio
async def test_process_question_is_not_advice(flows):
    result = await _router(flows).route(Session(id="s"), "Should I complete KYC first?")
    assert result.stage == "scripted"
    assert result.reply == flows.onboarding["kyc"].response


@pytest.mark.parametrize("message", [
    "Should I invest in XYZ fund?",
    "Which fund is best for me?",
    "Can you recommend a good fund?",
    "Is it safe to invest in small caps now?",
    "Should I sell my shares?",
])
def test_advice_phrasings(message):
    assert is_advice_request(message)


@pytest.mark.parametrize("message", [
    "Should I complete KYC before starting a SIP?",
    "Can you suggest how to stop my SIP?",
    "How do I buy units online?",
    "Can you recommend a way to reset my password?",
])
def test_how_to_questions_are_not_advice(message):
    assert not is_advice_request(message)


@pytest.mark.asyncio
async def test_how_to_question_with_investment_term_reaches_scripted(flows):
    result = await _router(flows).route(Session(id="s"), "Should I complete KYC before starting a SIP?")
    assert result.stage == "scripted"
    assert result.reply == flows.intents[0].response


@pytest.mark.asyncio
async def test_page_shortcut_needs_page_and_message(flows):
    router = _router(flows)
    on_page = await router.route(Session(id="s"), "How do I use this?", page="/tools/sip-calculator")
    assert on_page.stage == "page_shortcut"
    assert "calculator" in on_page.reply.lower()

    elsewhere = await router.route(Session(id="s"), "How do I use this?", page="/")
    assert elsewhere.stage != "page_shortcut"


@pytest.mark.asyncio
async def test_scripted_match_used_verbatim(flows):
    chat = MockChatClient()
    result = await _router(flows, chat=chat).route(Session(id="s"), "How do I register?")
    assert result.stage == "scripted"
    assert result.reply == flows.onboarding["register"].response
    assert result.suggested == list(flows.onboarding["register"].suggested)
    assert chat.calls == []


@pytest.mark.asyncio
async def test_model_fallback_with_two_sources(flows):
    search = FixedSearch(TWO_RESULTS)
    session = Session(id="s")
    result = await _router(flows, search=search).route(session, "Tell me about ELSS tax saving")

    assert result.stage == "model"
    assert search.queries == [("Tell me about ELSS tax saving", 3)]
    assert result.reply.startswith("ELSS funds have a 3 year lock-in.")
    footer = result.reply.split("<b>Sources:</b>", 1)[1]
    assert footer.count("<a ") == 2
    assert result.sources == [
        {"title": "ELSS Funds Explained", "url": "https://www.investonline.in/elss"},
        {"title": "Tax Saving Options", "url": "https://www.investonline.in/tax"},
    ]
    assert result.suggested[:2] == ["ELSS Funds Explained", "Tax Saving Options"]
    assert len(result.suggested) == 5
    assert [t.role for t in session.turns] == ["user", "bot"]
    assert session.turns[1].text == result.reply


@pytest.mark.asyncio
async def test_search_failure_is_absorbed(flows):
    result = await _router(flows, search=BrokenSearch()).route(Session(id="s"), "Tell me about ELSS tax saving")
    assert result.stage == "model"
    assert "Sources:" not in result.reply
    assert result.sources == []
    assert result.suggested == list(flows.generic_suggestions)[:5]


@pytest.mark.asyncio
async def test_search_timeout_is_absorbed(flows):
    result = await _router(flows, search=SlowSearch(timeout=0.05)).route(Session(id="s"), "Tell me about ELSS")
    assert result.stage == "model"
    assert result.sources == []


@pytest.mark.asyncio
async def test_model_failure_surfaces_and_leaves_session_untouched(flows):
    session = Session(id="s")
    with pytest.raises(UpstreamModelFailure) as exc:
        await _router(flows, chat=MockChatClient(fail=True)).route(session, "Tell me about ELSS")
    assert exc.value.status_code == 502
    assert "trouble" in exc.value.message
    assert session.turns == []


@pytest.mark.asyncio
async def test_model_timeout_is_a_model_failure(flows):
    router = _router(flows, chat=SlowChat(), model_timeout=0.05)
    with pytest.raises(UpstreamModelFailure):
        await router.route(Session(id="s"), "Tell me about ELSS")


@pytest.mark.asyncio
async def test_model_context_is_last_six_turns_oldest_first(flows):
    chat = MockChatClient(reply="ok")
    session = Session(id="s")
    for i in range(5):
        session.append("user", f"question {i}")
        session.append("bot", f"answer {i}")

    await _router(flows, chat=chat).route(session, "Tell me about ELSS", lang="hi")

    messages = chat.calls[0]
    assert messages[0]["role"] == "system"
    assert "'hi'" in messages[0]["content"]
    assert [m["content"] for m in messages[1:-1]] == [
        "question 2", "answer 2", "question 3", "answer 3", "question 4", "answer 4",
    ]
    assert [m["role"] for m in messages[1:-1]] == ["user", "assistant"] * 3
    assert messages[-1] == {"role": "user", "content": "Tell me about ELSS"}
    assert len(session.turns) == 12


@pytest.mark.asyncio
async def test_prompt_carries_reference_material(flows):
    chat = MockChatClient(reply="ok")
    await _router(flows, search=FixedSearch(TWO_RESULTS), chat=chat).route(Session(id="s"), "Tell me about ELSS")
    system = chat.calls[0][0]["content"]
    assert "https://www.investonline.in/elss" in system
    assert "Section 80C options." in system


@pytest.mark.asyncio
async def test_turns_accumulate_in_order(flows):
    router = _router(flows)
    session = Session(id="s")
    await router.route(session, "What is KYC?")
    await router.route(session, "What's the weather?")
    assert [t.role for t in session.turns] == ["user", "bot", "user", "bot"]
    assert session.turns[2].text == "What's the weather?"


def test_end_chat_phrases():
    assert is_end_chat("  End Chat ")
    assert is_end_chat("stop")
    assert not is_end_chat("stop my SIP")
