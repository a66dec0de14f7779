"""
Services Layer

Meet engine (pure, no database):
- pairing_score / pairing_generator: who wrestles whom
- mat_assigner: which mat
- bout_sequencer / conflict_summary: in what order

meet_pipeline is the only service that takes a Session; it loads a meet,
runs the engine and writes the results back in one transaction.
"""
