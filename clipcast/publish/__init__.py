"""Publishing: posts, their lifecycle, and the platforms they go to.

WHY: One clip is usually published to several destinations, each with
its own caption limits, credentials and upload protocol. Posts move
through a strict lifecycle so the UI can always show an honest status.

HOW: models.py defines Post and its status variants, store.py owns the
post collection and the transition table, scheduler.py drains the
derived queue one post at a time through the adapters/ package, and
tokens.py persists OAuth tokens per platform.

RULES:
- Status changes go through PublishStore; nothing mutates a Post in place
- At most one post is rendering or uploading at any moment
"""
