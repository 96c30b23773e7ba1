"""DOM perception: enumerate on-screen interactive elements for a page snapshot."""

from __future__ import annotations

import logging
from typing import Any, Dict

from playwright.async_api import Error as PlaywrightError, Page

logger = logging.getLogger(__name__)

ELEMENT_ID_ATTRIBUTE = "data-page-agent-id"
MAX_ELEMENTS = 150

_SNAPSHOT_SCRIPT = r"""
({ attribute, limit }) => {
  document.querySelectorAll(`[${attribute}]`).forEach((el) => el.removeAttribute(attribute));

  const interactiveSelectors = [
    'a[href]', 'button', 'input', 'select', 'textarea',
    '[role="button"]', '[role="link"]', '[onclick]',
  ];

  const isOnScreen = (el, rect) => {
    const style = window.getComputedStyle(el);
    if (!style || style.display === 'none' || style.visibility === 'hidden') return false;
    if (!rect || rect.width <= 0 || rect.height <= 0) return false;
    return rect.bottom > 0 && rect.right > 0 && rect.top < window.innerHeight && rect.left < window.innerWidth;
  };

  const elements = [];
  let counter = 0;
  for (const el of document.querySelectorAll(interactiveSelectors.join(','))) {
    if (elements.length >= limit) break;
    const rect = el.getBoundingClientRect();
    if (!isOnScreen(el, rect)) continue;
    const id = `el-${counter++}`;
    el.setAttribute(attribute, id);
    const text = (el.innerText || el.textContent || '').replace(/\s+/g, ' ').trim();
    elements.push({
      id,
      tag: el.tagName ? el.tagName.toLowerCase() : '',
      role: el.getAttribute('role'),
      text: text.slice(0, 100),
      attributes: {
        id: el.id || null,
        class_name: typeof el.className === 'string' && el.className ? el.className : null,
        href: el.getAttribute('href'),
        type: el.getAttribute('type'),
        placeholder: el.getAttribute('placeholder'),
        aria_label: el.getAttribute('aria-label'),
        name: el.getAttribute('name'),
        value: typeof el.value === 'string' && el.value ? el.value.slice(0, 100) : null,
      },
      is_interactive: true,
      is_visible: true,
      bounding_box: {
        x: Math.round(rect.x),
        y: Math.round(rect.y),
        width: Math.round(rect.width),
        height: Math.round(rect.height),
      },
    });
  }

  const main = document.querySelector('main, article') || document.body;
  return {
    url: window.location.href,
    title: document.title,
    elements,
    page_text: main && main.innerText ? main.innerText.slice(0, 2000) : '',
  };
}
"""


async def collect_snapshot_data(page: Page, limit: int = MAX_ELEMENTS) -> Dict[str, Any]:
    """Run the snapshot script; minted ids from earlier snapshots are cleared first."""
    try:
        data = await page.evaluate(_SNAPSHOT_SCRIPT, {"attribute": ELEMENT_ID_ATTRIBUTE, "limit": limit})
    except PlaywrightError as exc:
        logger.warning("Snapshot script failed on %s: %s", page.url, exc)
        return {"url": page.url, "title": "", "elements": [], "page_text": ""}
    return data or {"url": page.url, "title": "", "elements": [], "page_text": ""}


def element_selector(element_id: str) -> str:
    return f'[{ELEMENT_ID_ATTRIBUTE}="{element_id}"]'


__all__ = ["ELEMENT_ID_ATTRIBUTE", "collect_snapshot_data", "element_selector"]
