"""Classification, progress gating, outcome evaluation and the stream session."""
