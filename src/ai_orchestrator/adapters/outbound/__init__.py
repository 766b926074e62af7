"""Outbound adapters: HTTP transport, cache backends, credential stores."""
