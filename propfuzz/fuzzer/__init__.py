"""Coverage-guided transaction-sequence fuzzer.

Implements a multi-worker fuzzing campaign with:
  - Random transaction generation and sequence mutation
  - Shared coverage feedback and corpus evolution
  - Property / call / assertion / optimization test oracles
  - Delta-debugging shrinking of reproducers
"""
