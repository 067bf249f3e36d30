from cardwise.services.normalization.normalizer import ResponseNormalizer

__all__ = ["ResponseNormalizer"]
