"""API schemas: response envelopes and RFC 7807 problem bodies."""
