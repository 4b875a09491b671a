"""Audio rendering core.

- ``synth``/``mixer``/``scheduler``: real-time playback against an abstract
  audio context (``context``), driven by a periodic tick (``driver``).
- ``render``/``wav``/``export``: deterministic offline rendering to WAV.
- ``virtual`` and ``midi_sink``: the two bundled audio contexts.
"""
