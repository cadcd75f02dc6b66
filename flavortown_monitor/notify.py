"""
Slack notifications
===================
Renders an ItemDiff into Block Kit messages and posts them to the webhook.

Each changed item becomes one group of blocks that is never split across
messages. Groups are packed into messages with a divider between them, and
the last message gets a channel ping. One block per message is always kept
free for that ping.
"""

import json
import logging
from dataclasses import dataclass
from typing import List, Optional

import aiohttp

from .config import SLACK_HEADER_MAX_CHARS, SLACK_MAX_BLOCKS, SLACK_SECTION_MAX_CHARS
from .diff import ItemDiff
from .errors import TransportError
from .models import ALL_REGIONS, Accessory, Prices, ShopItem


logger = logging.getLogger(__name__)

EMOJI_SHELLS = ":shells:"
EMOJI_TROLLEY = ":shopping_trolley:"
EMOJI_NEW = ":new:"
EMOJI_TRASH = ":wastebasket:"
EMOJI_PENCIL = ":pencil2:"

NO_DESCRIPTION = "_no description_"
ARROW = "→"


@dataclass
class Message:
    text: str
    blocks: List[dict]

    def payload(self) -> dict:
        return {"text": self.text, "blocks": self.blocks}


# Blocks

def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit - 1] + "…"


def header_block(text: str) -> dict:
    return {"type": "header", "text": {"type": "plain_text", "text": _truncate(text, SLACK_HEADER_MAX_CHARS), "emoji": True}}


def section_block(markdown: str) -> dict:
    # Slack rejects empty section text
    return {"type": "section", "text": {"type": "mrkdwn", "text": _truncate(markdown, SLACK_SECTION_MAX_CHARS) or " "}}


def image_block(url: str, alt_text: str) -> dict:
    return {"type": "image", "image_url": url, "alt_text": alt_text}


def context_block(elements: List[dict]) -> dict:
    return {"type": "context", "elements": elements}


def markdown_element(text: str) -> dict:
    return {"type": "mrkdwn", "text": text}


def image_element(url: str, alt_text: str) -> dict:
    return {"type": "image", "image_url": url, "alt_text": alt_text}


def divider_block() -> dict:
    return {"type": "divider"}


# Text formatting

def escape_markdown(text: str) -> str:
    text = text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
    return "".join("\\" + c if c in "_*~`" else c for c in text)


def format_prices(prices: Prices) -> str:
    entries = [(region, prices[region]) for region in ALL_REGIONS if region in prices]
    if not entries:
        return "no price"
    if len(entries) == 1:
        region, price = entries[0]
        return f"{price} ({region})"
    if len(entries) == len(ALL_REGIONS) and all(price == entries[0][1] for _, price in entries):
        return f"{entries[0][1]} (All regions)"
    return ", ".join(f"{region} {price}" for region, price in entries)


def prices_changed(old: Prices, new: Prices) -> bool:
    return old != new


def format_stock(stock: Optional[int]) -> str:
    if stock is None:
        return "Unlimited"
    if stock == 0:
        return "Sold out"
    return f"{stock} left"


def format_accessories(accessories: List[Accessory]) -> str:
    if not accessories:
        return ""
    listed = ", ".join(f"{escape_markdown(acc.name)} ({format_prices(acc.prices)})" for acc in accessories)
    return f"*Accessories:* {listed}\n"


def item_description(desc: str) -> str:
    if not desc:
        return ""
    return f"_{escape_markdown(desc)}_\n"


def description_change(old: str, new: str) -> str:
    if not old and not new:
        return ""
    if old == new:
        return item_description(new)
    old_desc = escape_markdown(old) if old else NO_DESCRIPTION
    new_desc = escape_markdown(new) if new else NO_DESCRIPTION
    return f"{old_desc} {ARROW} {new_desc}\n"


def buy_button(url: str) -> str:
    return f"<{url}|*{EMOJI_TROLLEY} Buy*>"


def item_header(emoji: str, item: ShopItem) -> str:
    return f"{emoji} {item.title} ({EMOJI_SHELLS} {format_prices(item.prices)})"


# Item groups

def render_new_item(item: ShopItem, base_url: str) -> List[dict]:
    section_text = (
        f"{item_description(item.description)}"
        f"*Stock:* {format_stock(item.remaining_stock)}\n"
        f"{format_accessories(item.accessories)}\n"
        f"{buy_button(item.buy_link(base_url))}"
    )
    return [
        header_block(item_header(EMOJI_NEW, item)),
        section_block(section_text),
        image_block(item.image_url, f"Image for {item.title}"),
    ]


def render_deleted_item(item: ShopItem) -> List[dict]:
    return [
        header_block(item_header(EMOJI_TRASH, item)),
        section_block(item_description(item.description)),
        image_block(item.image_url, f"Image for {item.title}"),
    ]


def render_updated_item(old: ShopItem, new: ShopItem, base_url: str) -> List[dict]:
    title = f"{old.title} {ARROW} {new.title}" if old.title != new.title else new.title
    if prices_changed(old.prices, new.prices):
        price = f"{format_prices(old.prices)} {ARROW} {format_prices(new.prices)}"
    else:
        price = format_prices(new.prices)

    stock = format_stock(new.remaining_stock)
    if old.remaining_stock != new.remaining_stock:
        stock = f"{format_stock(old.remaining_stock)} {ARROW} {stock}"

    section_text = (
        f"{description_change(old.description, new.description)}"
        f"*Stock:* {stock}\n"
        f"{format_accessories(new.accessories)}\n"
        f"{buy_button(new.buy_link(base_url))}"
    )

    blocks = [
        header_block(f"{EMOJI_PENCIL} {title} ({EMOJI_SHELLS} {price})"),
        section_block(section_text),
    ]
    if old.image_url != new.image_url:
        blocks.append(context_block([
            markdown_element("*Old:*"),
            image_element(old.image_url, f"Old image for {new.title}"),
            markdown_element(f"{ARROW} *New:*"),
            image_element(new.image_url, f"New image for {new.title}"),
        ]))
    else:
        blocks.append(image_block(new.image_url, f"Image for {new.title}"))
    return blocks


def render_channel_ping(base_url: str) -> List[dict]:
    shop_url = base_url.rstrip("/") + "/shop"
    return [context_block([markdown_element(
        f"pinging <!channel> · <{shop_url}|{EMOJI_TROLLEY} open the shop>"
    )])]


# Batching

def batch_blocks(groups: List[List[dict]], max_blocks: int = SLACK_MAX_BLOCKS) -> List[List[dict]]:
    """
    Pack item groups into messages of at most max_blocks - 1 blocks,
    a divider between groups, never splitting a group.
    """
    messages: List[List[dict]] = []
    current: List[dict] = []

    for group in groups:
        blocks_needed = len(group) + 1 if current else len(group)
        if current and len(current) + blocks_needed > max_blocks - 1:
            messages.append(current)
            current = []
        if current:
            current.append(divider_block())
        current.extend(group)

    if current:
        messages.append(current)
    return messages


def build_messages(diff: ItemDiff, base_url: str, max_blocks: int = SLACK_MAX_BLOCKS) -> List[Message]:
    """Render a diff into webhook messages. An empty diff gives no messages."""
    groups = []
    for item in diff.new_items:
        logger.info(f"Rendering new item: {item.title}")
        groups.append(render_new_item(item, base_url))
    for old_item, new_item in diff.updated_items:
        logger.info(f"Rendering updated item: {new_item.title}")
        groups.append(render_updated_item(old_item, new_item, base_url))
    for item in diff.deleted_items:
        logger.info(f"Rendering removed item: {item.title}")
        groups.append(render_deleted_item(item))

    batches = batch_blocks(groups, max_blocks)
    if not batches:
        return []
    batches[-1].extend(render_channel_ping(base_url))

    summary_text = f"Shop update: {diff.summary()}"
    messages = []
    for i, blocks in enumerate(batches, 1):
        text = summary_text if len(batches) == 1 else f"{summary_text} (part {i}/{len(batches)})"
        messages.append(Message(text=text, blocks=blocks))
    return messages


# Delivery

class WebhookNotifier:
    def __init__(self, session: aiohttp.ClientSession, webhook_url: str, timeout: float = 30.0):
        self.session = session
        self.webhook_url = webhook_url
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def send(self, message: Message) -> None:
        async with self.session.post(self.webhook_url, json=message.payload(), timeout=self.timeout) as response:
            body = await response.text()
            if response.status >= 300:
                raise TransportError("webhook send", response.status, body)


class LoggingNotifier:
    """Dry-run stand-in for WebhookNotifier"""

    def __init__(self):
        self.sent: List[Message] = []

    async def send(self, message: Message) -> None:
        self.sent.append(message)
        logger.info(f"[dry run] {message.text}\n{json.dumps(message.payload(), indent=2, ensure_ascii=False)}")


async def dispatch(messages: List[Message], notifier) -> int:
    """Send messages in order. The first failure propagates and nothing after it is sent."""
    for i, message in enumerate(messages, 1):
        await notifier.send(message)
        logger.info(f"Webhook sent ({i}/{len(messages)}): {message.text}")
    return len(messages)
