from merchant_assistant.nlp.normalizer import Normalizer, longest_common_substring

__all__ = ["Normalizer", "longest_common_substring"]
