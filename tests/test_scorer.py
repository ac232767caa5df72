from aiohttp.test_utils import make_mocked_request

from botnetguard.config import Settings
from botnetguard.scorer import BotScorer
from botnetguard.state import ScoreStore

SETTINGS = Settings.from_mapping({
    "BOT_SCORE_BLOCK_THRESHOLD": "5",
    "BOT_SCORE_PATH_WEIGHT": "3",
    "BOT_SCORE_USER_AGENT_WEIGHT": "2",
})


def _request(path="/", user_agent="Mozilla/5.0"):
    headers = {} if user_agent is None else {"User-Agent": user_agent}
    return make_mocked_request("GET", path, headers=headers)


def test_signals():
    assert BotScorer.signals(_request("/WP-Login.php"), "/WP-Login.php", SETTINGS) == ["suspicious_path"]
    assert BotScorer.signals(_request(user_agent=None), "/", SETTINGS) == ["missing_user_agent"]
    assert BotScorer.signals(_request(user_agent=""), "/", SETTINGS) == ["missing_user_agent"]
    assert BotScorer.signals(_request(user_agent="Go-http-client/1.1"), "/", SETTINGS) == ["bad_user_agent"]
    assert BotScorer.signals(_request(), "/", SETTINGS) == []


async def test_clean_request_writes_nothing(store, clock):
    scorer = BotScorer(ScoreStore(store), clock)
    outcome = await scorer.score(_request(), "1.2.3.4", "/", SETTINGS)
    assert not outcome.should_block
    assert outcome.record is None
    assert len(store) == 0


async def test_score_accumulates_until_threshold(store, clock):
    scorer = BotScorer(ScoreStore(store), clock)

    first = await scorer.score(_request(user_agent="curl/8.0"), "1.2.3.4", "/", SETTINGS)
    assert not first.should_block
    second = await scorer.score(_request(user_agent="curl/8.0"), "1.2.3.4", "/", SETTINGS)
    assert not second.should_block
    third = await scorer.score(_request(user_agent="curl/8.0"), "1.2.3.4", "/", SETTINGS)

    assert third.should_block
    assert third.record.reason == "bot_signature"
    assert third.record.fields == {
        "score": 6,
        "blockThreshold": 5,
        "scoreDelta": 2,
        "signals": ["bad_user_agent"],
        "path": "/",
    }


async def test_both_signals_block_in_one_request(store, clock):
    scorer = BotScorer(ScoreStore(store), clock)
    outcome = await scorer.score(_request("/wp-login.php", "curl/8.0.1"), "9.9.9.9", "/wp-login.php", SETTINGS)
    assert outcome.should_block
    assert outcome.record.fields["scoreDelta"] == 5
    assert outcome.record.fields["signals"] == ["suspicious_path", "bad_user_agent"]


async def test_score_is_forgotten_after_silence(store, clock):
    scorer = BotScorer(ScoreStore(store), clock)
    await scorer.score(_request(user_agent=None), "1.2.3.4", "/", SETTINGS)
    await scorer.score(_request(user_agent=None), "1.2.3.4", "/", SETTINGS)
    clock.advance(SETTINGS.bot_score_ttl_seconds)
    outcome = await scorer.score(_request(user_agent=None), "1.2.3.4", "/", SETTINGS)
    assert not outcome.should_block
    assert await ScoreStore(store).get("1.2.3.4") == 2
