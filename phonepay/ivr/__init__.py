"""IVR building blocks: digit parsing, context codec, transitions, markup."""
