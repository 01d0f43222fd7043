"""Email bodies: digest, verification, preference update. Plain escaped HTML + text."""

import datetime as dt
from html import escape

from hndigest.models import Item

HN_ITEM_URL = "https://news.ycombinator.com/item?id={id}"

UNSUBSCRIBE_FOOTER_TEXT = "You are receiving this because you subscribed to Hacker Digest.\nUnsubscribe: {url}"


def item_link(item: Item) -> str:
    return item.url or HN_ITEM_URL.format(id=item.id)


def digest_subject(date: dt.date) -> str:
    return f"Hacker News Digest for {date.strftime('%b')} {date.day}, {date.year}"


def render_digest_html(items: list[Item], unsubscribe_url: str) -> str:
    rows = "\n".join(
        '<li><a href="{link}">{title}</a> <small>({score} points, '
        '<a href="{comments}">comments</a>)</small></li>'.format(
            link=escape(item_link(item), quote=True),
            title=escape(item.title),
            score=item.score,
            comments=escape(HN_ITEM_URL.format(id=item.id), quote=True),
        )
        for item in items
    )
    return (
        "<html><body>\n"
        f"<ol>\n{rows}\n</ol>\n"
        f'<p><small><a href="{escape(unsubscribe_url, quote=True)}">Unsubscribe</a></small></p>\n'
        "</body></html>"
    )


def render_digest_text(items: list[Item], unsubscribe_url: str) -> str:
    lines = [f"{i}. {item.title} ({item.score} points)\n   {item_link(item)}" for i, item in enumerate(items, 1)]
    return "\n".join(lines) + "\n\n---\n" + UNSUBSCRIBE_FOOTER_TEXT.format(url=unsubscribe_url)


def render_verification(verify_url: str, strategy_description: str) -> tuple[str, str]:
    """Return (html, text)."""
    text = (
        f"Confirm your subscription to Hacker Digest.\n\n"
        f"You asked to receive {strategy_description} each day.\n"
        f"Confirm here: {verify_url}\n\n"
        "If you did not request this, ignore this email."
    )
    html = (
        "<html><body>"
        "<p>Confirm your subscription to Hacker Digest.</p>"
        f"<p>You asked to receive {escape(strategy_description)} each day.</p>"
        f'<p><a href="{escape(verify_url, quote=True)}">Confirm subscription</a></p>'
        "<p><small>If you did not request this, ignore this email.</small></p>"
        "</body></html>"
    )
    return html, text


def render_preference_update(old_description: str, new_description: str) -> tuple[str, str]:
    """Return (html, text)."""
    text = (
        "Your Hacker Digest preferences have been updated.\n\n"
        f"Before: {old_description}\nNow: {new_description}\n\n"
        "If you did not make this change, you can subscribe again with your preferred setting."
    )
    html = (
        "<html><body>"
        "<p>Your Hacker Digest preferences have been updated.</p>"
        f"<p>Before: {escape(old_description)}<br>Now: {escape(new_description)}</p>"
        "<p><small>If you did not make this change, you can subscribe again with your preferred setting.</small></p>"
        "</body></html>"
    )
    return html, text


def render_unsubscribe_confirm(email: str, action_url: str) -> str:
    return (
        "<html><body>"
        f"<p>Unsubscribe <strong>{escape(email)}</strong> from Hacker Digest?</p>"
        f'<form method="post" action="{escape(action_url, quote=True)}">'
        '<button type="submit">Unsubscribe</button>'
        "</form>"
        "</body></html>"
    )
