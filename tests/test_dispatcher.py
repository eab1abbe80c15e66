"""Tests for sink configuration and notification fan-out."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from alerting.dispatcher import (
    ListMode,
    NotificationDispatcher,
    SinkConfig,
    SinkKind,
    load_sinks,
    sink_environment,
)
from enrichment.luminex import AddressHoldings
from models.events import EventKind, HotTokenEvent, ReportEvent, SwapEvent
from models.swaps import NATIVE_TOKEN_ADDRESS, SwapRecord

POOL = "02" + "aa" * 32
OTHER_POOL = "03" + "bb" * 32
TOKEN = "03" + "ab" * 32


def swap_event(pool: str = POOL, sats: int = 50_000_000) -> SwapEvent:
    return SwapEvent(swap=SwapRecord(
        id="s1",
        pool_id=pool,
        swapper="pkabc",
        asset_in=NATIVE_TOKEN_ADDRESS,
        asset_out=TOKEN,
        amount_in=str(sats),
        amount_out="100000000000",
    ))


def sink(name: str, kind: SinkKind = SinkKind.TELEGRAM, **kwargs) -> SinkConfig:
    return SinkConfig(name=name, kind=kind, target=f"target-{name}", **kwargs)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def make_dispatcher(sinks, allowed=(), blocked=(), clock=None, **kwargs) -> NotificationDispatcher:
    token_lists = MagicMock()
    token_lists.is_allowed = AsyncMock(side_effect=lambda pool: pool in allowed)
    token_lists.is_blocked = AsyncMock(side_effect=lambda pool: pool in blocked)
    telegram = MagicMock()
    telegram.send = AsyncMock(return_value=True)
    discord = MagicMock()
    discord.send = AsyncMock(return_value=True)
    return NotificationDispatcher(
        sinks,
        token_lists,
        telegram=telegram,
        discord=discord,
        clock=clock or FakeClock(),
        **kwargs,
    )


class TestSinkConfig:
    """Tests for loading sink definitions."""

    def test_load_sinks(self, tmp_path):
        path = tmp_path / "sinks.yaml"
        path.write_text(
            "sinks:\n"
            "  - name: main\n"
            "    kind: telegram\n"
            "    target: \"${MAIN_CHAT}\"\n"
            "    events: [swap, hot_token]\n"
            "    min_btc: 0.01\n"
            "    list_mode: allow_list\n"
            "    cooldown_seconds: 3600\n"
            "  - name: quiet\n"
            "    kind: discord\n"
            "    target: \"${SPARKWATCH_UNSET_HOOK}\"\n"
            "  - name: broken\n"
            "    kind: pigeon\n"
            "    target: somewhere\n"
        )

        sinks = load_sinks(str(path), env={"MAIN_CHAT": "-100123"})

        assert [s.name for s in sinks] == ["main"]
        main = sinks[0]
        assert main.target == "-100123"
        assert main.events == [EventKind.SWAP, EventKind.HOT_TOKEN]
        assert main.min_btc == 0.01
        assert main.list_mode == ListMode.ALLOW_LIST
        assert main.cooldown_seconds == 3600

    def test_dotenv_overlaid_by_environment(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("HOT_CHAT_ID=-100777\nMAIN_CHAT_ID=-1001\n")
        monkeypatch.setenv("MAIN_CHAT_ID", "-1002")

        env = sink_environment(str(env_file))

        assert env["HOT_CHAT_ID"] == "-100777"
        assert env["MAIN_CHAT_ID"] == "-1002"

    def test_missing_file(self, tmp_path):
        assert load_sinks(str(tmp_path / "nope.yaml")) == []

    def test_defaults(self):
        config = SinkConfig.from_dict({"name": "a", "target": "x"}, env={})
        assert config.kind == SinkKind.TELEGRAM
        assert config.events == [EventKind.SWAP]
        assert config.respect_block_list is True
        assert config.include_holder is False

    def test_nameless_sink_rejected(self):
        with pytest.raises(ValueError):
            SinkConfig.from_dict({"target": "x"}, env={})


class TestEligibility:
    """Tests for per-sink rules."""

    @pytest.mark.asyncio
    async def test_event_kind_and_threshold(self):
        big = sink("big", min_btc=1.0)
        dispatcher = make_dispatcher([big])

        assert not await dispatcher.is_eligible(big, swap_event(sats=50_000_000))
        assert await dispatcher.is_eligible(big, swap_event(sats=150_000_000))
        assert not await dispatcher.is_eligible(big, HotTokenEvent(pool_id=POOL, swap_count=6, unique_swappers=3))

    @pytest.mark.asyncio
    async def test_small_buy_above_minimum_is_sent(self):
        """A 500000 sat (0.005 btc) buy passes a 0.0025 btc minimum."""
        filtered = sink("filtered", min_btc=0.0025)
        dispatcher = make_dispatcher([filtered])

        assert await dispatcher.dispatch(swap_event(sats=500_000)) == {"filtered": True}
        dispatcher.telegram.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_allow_and_block_lists(self):
        filtered = sink("filtered", list_mode=ListMode.ALLOW_LIST)
        everything = sink("all")
        raw = sink("raw", respect_block_list=False)
        dispatcher = make_dispatcher([filtered, everything, raw], allowed={POOL}, blocked={OTHER_POOL})

        assert await dispatcher.is_eligible(filtered, swap_event(POOL))
        assert not await dispatcher.is_eligible(filtered, swap_event(OTHER_POOL))
        assert not await dispatcher.is_eligible(everything, swap_event(OTHER_POOL))
        assert await dispatcher.is_eligible(raw, swap_event(OTHER_POOL))

    @pytest.mark.asyncio
    async def test_reports_ignore_lists(self):
        """Reports carry no pool, so allow-list sinks still receive them."""
        reports = sink("reports", events=[EventKind.REPORT], list_mode=ListMode.ALLOW_LIST)
        dispatcher = make_dispatcher([reports])
        assert await dispatcher.is_eligible(reports, ReportEvent(text="x"))


class TestDispatch:
    """Tests for fan-out and delivery accounting."""

    @pytest.mark.asyncio
    async def test_failures_stay_local_to_sink(self):
        """A raising sink does not stop delivery to the others."""
        dispatcher = make_dispatcher([sink("tg"), sink("dc", SinkKind.DISCORD)])
        dispatcher.telegram.send.side_effect = RuntimeError("boom")

        results = await dispatcher.dispatch(swap_event())

        assert results == {"tg": False, "dc": True}
        stats = dispatcher.get_stats()
        assert stats["delivered"] == {"tg": 0, "dc": 1}
        assert stats["failed"] == {"tg": 1, "dc": 0}

    @pytest.mark.asyncio
    async def test_ineligible_sinks_are_absent(self):
        dispatcher = make_dispatcher([sink("small"), sink("big", min_btc=10.0)])

        assert await dispatcher.dispatch(swap_event()) == {"small": True}
        dispatcher.telegram.send.assert_awaited_once()
        assert dispatcher.telegram.send.await_args.args[0] == "target-small"

    @pytest.mark.asyncio
    async def test_payload_per_format(self):
        """Sinks sharing a format share a message; holder sinks get the holder variant."""
        dispatcher = make_dispatcher([sink("a"), sink("b"), sink("c", include_holder=True)])

        await dispatcher.dispatch(swap_event())

        messages = [call.args[1] for call in dispatcher.telegram.send.await_args_list]
        assert messages[0] is messages[1]
        assert messages[2] is not messages[0]

    @pytest.mark.asyncio
    async def test_only_restricts_sinks(self):
        reports = sink("filtered", events=[EventKind.REPORT])
        other = sink("other", events=[EventKind.REPORT])
        dispatcher = make_dispatcher([reports, other])

        results = await dispatcher.dispatch(ReportEvent(text="report"), only=["filtered"])

        assert results == {"filtered": True}

    @pytest.mark.asyncio
    async def test_hot_cooldown_armed_on_success_only(self):
        clock = FakeClock()
        hot = sink("hot", events=[EventKind.HOT_TOKEN], cooldown_seconds=3600)
        dispatcher = make_dispatcher([hot], clock=clock)
        event = HotTokenEvent(pool_id=POOL, swap_count=6, unique_swappers=3)

        dispatcher.telegram.send.return_value = False
        assert await dispatcher.dispatch(event) == {"hot": False}
        assert not dispatcher.in_cooldown(hot, POOL)

        dispatcher.telegram.send.return_value = True
        assert await dispatcher.dispatch(event) == {"hot": True}
        assert await dispatcher.dispatch(event) == {}

        clock.now += 3600
        assert await dispatcher.dispatch(event) == {"hot": True}

    @pytest.mark.asyncio
    async def test_expired_cooldowns_are_pruned(self):
        """Only pools still cooling down stay in memory."""
        clock = FakeClock()
        hot = sink("hot", events=[EventKind.HOT_TOKEN], cooldown_seconds=3600)
        dispatcher = make_dispatcher([hot], clock=clock)

        await dispatcher.dispatch(HotTokenEvent(pool_id=POOL, swap_count=6, unique_swappers=3))
        assert dispatcher.get_stats()["cooldowns_active"] == 1

        clock.now += 3600
        await dispatcher.dispatch(HotTokenEvent(pool_id=OTHER_POOL, swap_count=6, unique_swappers=3))

        assert dispatcher.get_stats()["cooldowns_active"] == 1
        assert dispatcher.in_cooldown(hot, OTHER_POOL)
        assert not dispatcher.in_cooldown(hot, POOL)


class TestEnrichment:
    """Tests for best-effort swap enrichment."""

    @pytest.mark.asyncio
    async def test_partial_failures_leave_fields_empty(self):
        luminex = MagicMock()
        luminex.get_pool_metadata = AsyncMock(side_effect=RuntimeError("luminex down"))
        luminex.get_address_holdings = AsyncMock(side_effect=RuntimeError("timeout"))
        luminex.get_username = AsyncMock(return_value="bob")
        flashnet = MagicMock()
        flashnet.first_buy_display = AsyncMock(return_value="01.03.2024")
        dispatcher = make_dispatcher([sink("a")], luminex=luminex, flashnet=flashnet)

        ctx = await dispatcher.enrich_swap(swap_event(), full=True)

        assert ctx.metadata is None
        assert ctx.holdings is None
        assert ctx.username == "bob"
        assert ctx.first_buy == "01.03.2024"
        assert dispatcher.get_stats()["enrichment_errors"] == 2

    @pytest.mark.asyncio
    async def test_light_enrichment_skips_wallet_lookups(self):
        luminex = MagicMock()
        luminex.get_pool_metadata = AsyncMock(return_value=None)
        luminex.get_address_holdings = AsyncMock(return_value=AddressHoldings(public_key="pkabc"))
        dispatcher = make_dispatcher([sink("a")], luminex=luminex)

        await dispatcher.enrich_swap(swap_event(), full=False)

        luminex.get_address_holdings.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_message_still_sent_without_enrichment(self):
        luminex = MagicMock()
        luminex.get_pool_metadata = AsyncMock(side_effect=RuntimeError("luminex down"))
        dispatcher = make_dispatcher([sink("a")], luminex=luminex)

        assert await dispatcher.dispatch(swap_event()) == {"a": True}
        message = dispatcher.telegram.send.await_args.args[1]
        assert POOL in message.text
