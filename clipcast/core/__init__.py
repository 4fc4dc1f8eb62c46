"""Pure composition modules: timing, captions, multicam, render plan.

WHY: Everything the external renderer needs per frame is computed here,
deterministically, from transcript timing and track configuration.

HOW: ir.py defines the data shapes, timing.py maps seconds to frames,
captions.py groups words into cues and computes animation state,
multicam.py computes camera layout/crop/transition state, and
render_plan.py assembles all of it into the renderer payload.

RULES:
- No module here performs network I/O or keeps state between calls
- Only a malformed switching timeline raises (ConfigurationError)
"""
