"""Security-critical building blocks.

- Path containment and symlink validation (safe_paths.py)
- Crash-safe file replacement (atomic_write.py)
- Fallback text matching (matching.py)
- Atomic multi-edit application (edits.py)
- Git destructive-command classification (git_safety.py)
- Sandboxed command execution (sandbox.py)
- Telemetry logging and redaction (telemetry.py, redaction.py)
"""
