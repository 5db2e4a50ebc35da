"""
Region expansion: geographic requests -> ordered tile id sequences.

- expander: bounding box / radius window per zoom, multi-zoom concatenation
- presets: named bounding boxes (built-in `seoul` + config `presets:`)
"""
