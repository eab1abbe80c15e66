"""Notification formatting: Telegram HTML messages and Discord embeds."""

import html
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from config.settings import settings
from enrichment.luminex import AddressHoldings, PoolMetadata
from models.events import HotTokenEvent, ReportEvent, SwapEvent
from models.holders import HolderAction
from models.swaps import SwapRecord, SwapSide


def _trim(formatted: str) -> str:
    return formatted.rstrip("0").rstrip(".")


def format_market_cap(value: float) -> str:
    """`$1.23B`, `$4.5M`, `$12K`, `$950`; empty for zero."""
    if value <= 0:
        return ""
    if value >= 1_000_000_000:
        return f"${_trim(f'{value / 1_000_000_000:.2f}')}B"
    if value >= 1_000_000:
        return f"${_trim(f'{value / 1_000_000:.2f}')}M"
    if value >= 1_000:
        return f"${_trim(f'{value / 1_000:.2f}')}K"
    return f"${_trim(f'{value:.2f}')}"


def format_token_amount(value: float) -> str:
    """`1.1M`, `250K`, `42`, `3.14`."""
    if value == 0:
        return "0"
    if value >= 1_000_000_000:
        return f"{_trim(f'{value / 1_000_000_000:.1f}')}B"
    if value >= 1_000_000:
        return f"{_trim(f'{value / 1_000_000:.1f}')}M"
    if value >= 1_000:
        return f"{_trim(f'{value / 1_000:.1f}')}K"
    if value == int(value):
        return f"{value:.0f}"
    return _trim(f"{value:.2f}")


def format_btc(value: float) -> str:
    """8 decimals with trailing zeros trimmed."""
    if value == 0:
        return "0"
    return _trim(f"{value:.8f}")


def short_address(address: str) -> str:
    if len(address) <= 12:
        return address
    return f"{address[:8]}...{address[-4:]}"


def trade_url(pool_id: str) -> str:
    return f"https://luminex.io/spark/trade/{pool_id}"


def wallet_url(address: str) -> str:
    return f"https://luminex.io/spark/address/{address}"


def token_amount_from_swap(swap: SwapRecord, metadata: Optional[PoolMetadata]) -> str:
    """Whole-token leg of a swap, formatted; empty when unknown."""
    raw = swap.token_amount_raw
    if not raw:
        return ""
    try:
        amount = float(raw)
    except ValueError:
        return ""
    decimals = metadata.decimals if metadata else 8
    return format_token_amount(amount / (10 ** decimals))


@dataclass
class SwapContext:
    """Best-effort enrichment for a swap message. Every part may be missing."""
    metadata: Optional[PoolMetadata] = None
    holdings: Optional[AddressHoldings] = None
    username: Optional[str] = None
    first_buy: Optional[str] = None

    def holding_line(self) -> Optional[str]:
        """`amount (usd)` for the swapped token, `null` when not held."""
        if not self.metadata or not self.metadata.ticker:
            return None
        holding = self.holdings.find(self.metadata.ticker) if self.holdings else None
        if holding is None:
            return "null"
        try:
            amount = holding.amount
        except ValueError:
            return "null"
        usd = format_market_cap(amount * self.metadata.token.price_usd)
        text = format_token_amount(amount)
        return f"{text} ({usd})" if usd else text


@dataclass
class TelegramMessage:
    """One outbound Telegram message."""
    text: str
    photo_url: Optional[str] = None
    button_text: Optional[str] = None
    button_url: Optional[str] = None


class MessageFormatter:
    """Builds per-sink payloads from dispatch events."""

    SIDE_LABELS = {
        SwapSide.BUY: ("\U0001F7E2", "Buy"),
        SwapSide.SELL: ("\U0001F534", "Sell"),
        SwapSide.SWAP: ("\U0001F504", "Swap"),
    }

    SIDE_COLORS = {
        SwapSide.BUY: 0x00AA00,
        SwapSide.SELL: 0xFF0000,
        SwapSide.SWAP: 0x888888,
    }

    ACTION_LABELS = {
        HolderAction.INVESTED: "invested",
        HolderAction.SOLD: "sold",
        HolderAction.LIQUIDATED: "liquidated",
    }

    @staticmethod
    def token_title(swap: SwapRecord, metadata: Optional[PoolMetadata]) -> str:
        if metadata and metadata.name and metadata.token.ticker:
            return f"{html.escape(metadata.name)} {{{html.escape(metadata.token.ticker)}}}"
        return swap.pool_id

    @staticmethod
    def holder_line(event: SwapEvent) -> Optional[str]:
        transition = event.transition
        if transition is None:
            return None
        label = MessageFormatter.ACTION_LABELS[transition.action]
        sign = "+" if transition.delta >= 0 else "-"
        return (
            f"Holder {label} - {sign}{format_token_amount(abs(transition.delta))}, "
            f"now {format_token_amount(transition.current)}"
        )

    @staticmethod
    def _swap_detail_lines(event: SwapEvent, ctx: SwapContext, include_holder: bool) -> list:
        swap = event.swap
        lines = []

        market_cap = format_market_cap(ctx.metadata.market_cap_usd) if ctx.metadata else ""
        if market_cap:
            lines.append(f"Market cap - {market_cap}")

        suffix = swap.swapper[-3:]
        name = html.escape(ctx.username or "wallet")
        if ctx.holdings is not None:
            link = wallet_url(ctx.holdings.spark_address or swap.swapper)
            lines.append(f'Buyer wallet - <a href="{link}">{name}</a> ({suffix})')
        else:
            lines.append(f"Buyer wallet - {html.escape(ctx.username or swap.swapper)} ({suffix})")

        if ctx.first_buy:
            lines.append(f"First buy - {ctx.first_buy}")

        holding = ctx.holding_line()
        if holding is not None:
            lines.append(f"Holding right now - {holding}")

        if ctx.holdings is not None:
            lines.append(f"Current net balance - {format_btc(ctx.holdings.native_balance_btc)} btc")

        if include_holder:
            holder = MessageFormatter.holder_line(event)
            if holder:
                lines.append(holder)

        return lines

    @staticmethod
    def format_swap_telegram(
        event: SwapEvent,
        ctx: Optional[SwapContext] = None,
        include_holder: bool = False,
    ) -> TelegramMessage:
        ctx = ctx or SwapContext()
        swap = event.swap
        side = swap.side
        emoji, label = MessageFormatter.SIDE_LABELS[side]
        title = MessageFormatter.token_title(swap, ctx.metadata)

        if side == SwapSide.SWAP:
            text = (
                f"{emoji} {label} {title}\n"
                "<blockquote>"
                f"In: {swap.amount_in} ({short_address(swap.asset_in)})\n"
                f"Out: {swap.amount_out} ({short_address(swap.asset_out)})\n"
                f"Swapper: {swap.swapper}"
                "</blockquote>"
            )
        else:
            tokens = token_amount_from_swap(swap, ctx.metadata)
            tokens_part = f" ({tokens})" if tokens else ""
            details = "\n".join(MessageFormatter._swap_detail_lines(event, ctx, include_holder))
            text = (
                f"{emoji} {label} {title} - {format_btc(swap.value_btc)} btc{tokens_part}\n"
                f"<blockquote>{details}</blockquote>"
            )

        photo_url = None
        if swap.pool_id == settings.soon_pool_id:
            if side == SwapSide.BUY:
                photo_url = settings.soon_buy_photo_url
            elif side == SwapSide.SELL:
                photo_url = settings.soon_sell_photo_url

        return TelegramMessage(
            text=text,
            photo_url=photo_url,
            button_text="Trade on Luminex",
            button_url=trade_url(swap.pool_id),
        )

    @staticmethod
    def format_hot_telegram(
        event: HotTokenEvent,
        metadata: Optional[PoolMetadata] = None,
    ) -> TelegramMessage:
        if metadata:
            ticker = html.escape(metadata.token.ticker)
            market_cap = format_market_cap(metadata.pool_market_cap_usd or metadata.token.market_cap_usd)
            token_address = metadata.token.address
            website = metadata.token.website_url
            twitter = metadata.token.twitter_url
        else:
            ticker, market_cap, token_address, website, twitter = event.pool_id[:8], "", "", None, None

        search_target = token_address or event.pool_id
        lines = [
            f"Token: {short_address(token_address) if token_address else 'null'}",
            f'Luminex: <a href="{trade_url(event.pool_id)}">link</a>',
            f'Website: <a href="{html.escape(website)}">link</a>' if website else "Website: null",
            f'TA: <a href="https://x.com/search?q={search_target}">link</a>',
            f'X: <a href="{html.escape(twitter)}">link</a>' if twitter else "X: null",
        ]
        text = (
            f"❗️<b>hot</b> rn: {ticker} - {market_cap or 'n/a'}\n"
            f"<blockquote>{chr(10).join(lines)}</blockquote>"
        )
        return TelegramMessage(text=text)

    @staticmethod
    def format_report_telegram(event: ReportEvent) -> TelegramMessage:
        return TelegramMessage(text=event.text)

    # --- Discord ---

    @staticmethod
    def html_to_markdown(text: str) -> str:
        text = re.sub(r'<a href="([^"]+)">([^<]*)</a>', r"[\2](\1)", text)
        text = text.replace("<code>", "`").replace("</code>", "`")
        text = text.replace("<b>", "**").replace("</b>", "**")
        text = re.sub(r"</?blockquote>", "", text)
        return html.unescape(text)

    @staticmethod
    def format_swap_discord(
        event: SwapEvent,
        ctx: Optional[SwapContext] = None,
        include_holder: bool = False,
    ) -> dict:
        ctx = ctx or SwapContext()
        swap = event.swap
        emoji, label = MessageFormatter.SIDE_LABELS[swap.side]
        metadata = ctx.metadata
        token = f"{metadata.name} ({metadata.token.ticker})" if metadata else short_address(swap.pool_id)

        tokens = token_amount_from_swap(swap, metadata)
        description = f"**{format_btc(swap.value_btc)} BTC**"
        if tokens:
            description += f" for **{tokens}** tokens"

        details = MessageFormatter._swap_detail_lines(event, ctx, include_holder)
        fields = [{
            "name": "\U0001F4CB Details",
            "value": MessageFormatter.html_to_markdown("\n".join(details)),
            "inline": False,
        }]

        embed = {
            "title": f"{emoji} {label} - {token}",
            "url": trade_url(swap.pool_id),
            "description": description,
            "color": MessageFormatter.SIDE_COLORS[swap.side],
            "fields": fields,
            "footer": {"text": f"Pool: {swap.pool_id}"},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        return {"embeds": [embed]}

    @staticmethod
    def format_hot_discord(event: HotTokenEvent, metadata: Optional[PoolMetadata] = None) -> dict:
        message = MessageFormatter.format_hot_telegram(event, metadata)
        title, _, body = message.text.partition("\n")
        embed = {
            "title": MessageFormatter.html_to_markdown(title),
            "url": trade_url(event.pool_id),
            "description": MessageFormatter.html_to_markdown(body),
            "color": 0xFF4400,
            "fields": [{
                "name": "\U0001F4CA Activity",
                "value": (
                    f"**{event.swap_count}** swaps from "
                    f"**{event.unique_swappers}** wallets"
                ),
                "inline": True,
            }],
            "footer": {"text": f"Pool: {event.pool_id}"},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        return {"embeds": [embed]}

    @staticmethod
    def format_report_discord(event: ReportEvent) -> dict:
        return {"content": MessageFormatter.html_to_markdown(event.text)}

