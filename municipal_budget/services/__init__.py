"""External service integrations: storage backends and outbound mail."""
