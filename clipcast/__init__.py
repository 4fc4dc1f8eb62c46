"""clipcast: captioned social clips from long-form podcast recordings.

WHY: A podcast producer wants short, captioned, multi-camera clips pushed
to several video platforms. Two parts of that workflow carry real
engineering difficulty: computing a frame-accurate render plan from
word-level transcript timing and camera configuration, and orchestrating
many independent publish jobs against heterogeneous platform APIs.

HOW: Two halves. ``clipcast.core`` (pure, frame-indexed composition
functions feeding an external renderer) and ``clipcast.publish`` (post
store state machine, single-flight scheduler, platform adapters). The
``server`` package exposes both over HTTP, ``cli`` from the terminal.

RULES:
- Composition functions are pure: same inputs, same frame state
- All post status changes go through the store's transition check
- The render plan is the stable contract with the renderer
"""

__version__ = "0.1.0"
