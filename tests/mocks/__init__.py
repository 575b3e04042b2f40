from .mock_adapter import MockAdapter, MockAdapterProvider

__all__ = ['MockAdapter', 'MockAdapterProvider']
