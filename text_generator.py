"""Local large language model backend.

:class:`TextGenerator` wraps a Hugging Face Transformers causal language model
behind the ``generate_response`` call the manuscript services use, so a book
can be written entirely offline when ``LLM_BACKEND=local``. Install the
``local`` extra to pull in ``torch`` and ``transformers``.

4-bit loading is attempted only when CUDA and ``bitsandbytes`` are both
available; otherwise the model loads in its default precision.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import torch
from transformers import AutoModelForCausalLM, AutoTokenizer, BitsAndBytesConfig

LOGGER = logging.getLogger(__name__)


class TextGenerator:
    def __init__(
        self,
        model_path: str,
        *,
        temperature: Optional[float] = 0.8,
        top_p: Optional[float] = 0.95,
        max_new_tokens: int = 2048,
        seed: int = 42,
        device_map: str | Dict[str, Any] | None = "auto",
        use_4bit: bool = True,
    ):
        self.temperature = temperature
        self.top_p = top_p
        self.max_new_tokens = max_new_tokens
        self.use_4bit = use_4bit

        torch.manual_seed(seed)
        if torch.cuda.is_available():
            torch.cuda.manual_seed_all(seed)

        model_kwargs: Dict[str, Any] = {"device_map": device_map, "torch_dtype": "auto"}
        quantization_config = self._build_quantization_config()
        if quantization_config is not None:
            model_kwargs["quantization_config"] = quantization_config

        self.model = AutoModelForCausalLM.from_pretrained(model_path, **model_kwargs)
        self.model.eval()

        self.tokenizer = AutoTokenizer.from_pretrained(model_path)
        if self.tokenizer.pad_token is None:
            self.tokenizer.pad_token = self.tokenizer.eos_token
        self.tokenizer.padding_side = "left"

    def _build_quantization_config(self) -> Optional[BitsAndBytesConfig]:
        if not self.use_4bit:
            return None

        if not torch.cuda.is_available():
            LOGGER.info("CUDA is not available; skipping 4-bit quantisation.")
            return None

        try:
            import bitsandbytes  # type: ignore  # noqa: F401
        except ImportError:
            LOGGER.info("bitsandbytes not installed; using full precision model loading.")
            return None

        LOGGER.info("Loading model with 4-bit quantisation enabled.")
        return BitsAndBytesConfig(
            load_in_4bit=True,
            bnb_4bit_use_double_quant=True,
            bnb_4bit_quant_type="nf4",
            bnb_4bit_compute_dtype=torch.float16,
        )

    def _generation_kwargs(
        self,
        max_new_tokens: Optional[int],
        temperature: Optional[float],
        top_p: Optional[float],
        extra_parameters: Dict[str, Any],
    ) -> Dict[str, Any]:
        tokens_to_generate = int(self.max_new_tokens if max_new_tokens is None else max_new_tokens)
        if tokens_to_generate <= 0:
            raise ValueError("max_new_tokens must be a positive integer")

        kwargs: Dict[str, Any] = {
            "max_new_tokens": tokens_to_generate,
            "do_sample": True,
            "pad_token_id": self.tokenizer.pad_token_id,
        }
        effective_temperature = self.temperature if temperature is None else temperature
        effective_top_p = self.top_p if top_p is None else top_p
        if effective_temperature is not None:
            kwargs["temperature"] = effective_temperature
        if effective_top_p is not None:
            kwargs["top_p"] = effective_top_p

        # OpenAI-only knobs have no meaning for a local model.
        for key in ("presence_penalty", "frequency_penalty"):
            extra_parameters.pop(key, None)
        kwargs.update({key: value for key, value in extra_parameters.items() if value is not None})
        return kwargs

    def generate_response(
        self,
        prompt: str,
        *,
        max_new_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        **extra_parameters: Any,
    ) -> str:
        """Generate a response to ``prompt`` without echoing it back."""

        generation_kwargs = self._generation_kwargs(
            max_new_tokens, temperature, top_p, dict(extra_parameters)
        )
        enc = self.tokenizer(prompt, return_tensors="pt").to(self.model.device)

        started = time.perf_counter()
        with torch.no_grad():
            out = self.model.generate(**enc, **generation_kwargs)
        LOGGER.info(
            "Generated %d tokens in %.1fs on %s.",
            out.shape[-1] - enc["input_ids"].shape[-1],
            time.perf_counter() - started,
            self.get_compute_device(),
        )

        generated_ids = out[0, enc["input_ids"].shape[-1]:]
        if generated_ids.numel() == 0:
            return ""
        return self.tokenizer.decode(generated_ids, skip_special_tokens=True).strip()

    def get_compute_device(self) -> str:
        device_str = str(getattr(self.model, "device", "cpu")).lower()
        if any(token in device_str for token in ("cuda", "hip", "mps")):
            return "GPU"
        return "CPU"
