"""Gemini AI provider implementation."""

import logging
import random
import time
import google.generativeai as genai

from core.interfaces import AIProvider, Storage
from core.config import MAX_TIER
from core.errors import GenerationError
from core.utils import extract_json_object

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

TIER_DESCRIPTIONS = {
    1: "BEGINNER (CEFR A1). Short, simple subject-verb-object sentence. Top 500 words only.",
    2: "BEGINNER (CEFR A2). Simple sentence, present or past tense. Top 1000 words.",
    3: "ELEMENTARY (CEFR A2/B1). Simple compound sentence (and/but). Common daily topics.",
    4: "INTERMEDIATE (CEFR B1). Standard everyday prose with one subordinate clause.",
    5: "INTERMEDIATE (CEFR B2). Relative clauses, passive voice or conditionals. Top 4000 words.",
    6: "UPPER INTERMEDIATE (CEFR B2/C1). Mixed tenses, reported speech, less common vocabulary.",
    7: "ADVANCED (CEFR C1). Complex syntax such as inversion or the subjunctive. Formal register.",
    8: "ADVANCED (CEFR C1/C2). Abstract academic topics, dense information, nuanced word choice.",
    9: "EXPERT (CEFR C2). Native-level sophistication, idioms and subtle stylistic nuance.",
}

# Extra constraints for drills generated under a boss
BOSS_INSTRUCTIONS = {
    'lightning': "The student is racing a countdown: keep the sentence under 15 words.",
    'blind': "The student will not see any text: the sentence must be fully understandable by ear.",
    'echo': "The audio is played only once: avoid proper nouns and numbers that are hard to catch.",
    'reverser': "The student will translate in the reverse direction, from English back to the source language.",
    'reaper': "This is a boss fight: make the sentence demanding for the stated level.",
    'roulette': "The student survived a gamble: make the sentence slightly harder than the stated level.",
    'roulette_execution': "Final challenge: make the sentence as hard as the stated level allows.",
}

THEMES = ["travel", "work", "science", "food", "sport", "history", "technology", "health",
          "nature", "city life", "art", "money"]


class GeminiProvider(AIProvider):
    """Gemini AI provider implementation."""

    def __init__(self, api_key: str, model_name: str = 'gemini-2.0-flash',
                 source_language: str = 'Chinese', storage: Storage | None = None):
        genai.configure(api_key=api_key)
        self.model = genai.GenerativeModel(model_name)
        self.model_name = model_name
        self.source_language = source_language
        self.storage = storage

    def _execute_chat(self, prompt: str) -> tuple[str, int]:
        start_time = time.time()
        try:
            response = self.model.generate_content(prompt)
            text = response.text
        except Exception as e:
            logger.error(f"Gemini request failed ({self.model_name}): {e}")
            raise GenerationError(f"Gemini request failed: {e}") from e
        end_time = time.time()
        ms = int((end_time - start_time) * 1000)
        return (text, ms)

    def _parse_json(self, response: str, what: str) -> dict:
        try:
            return extract_json_object(response)
        except ValueError as e:
            logger.error(f"Failed to parse {what}: {e}")
            logger.error(f"Raw response:\n{response}")
            # Try to diagnose the issue
            if '{' not in response:
                logger.error("Diagnosis: No opening brace '{' found in response")
            elif '}' not in response:
                logger.error("Diagnosis: No closing brace '}' found in response")
            raise GenerationError(f"malformed {what} response") from e

    def _record_stats(self, call: str, ms: int) -> None:
        """Accumulate per-call timing in storage when one is attached."""
        if self.storage is None:
            return
        name = f"gemini:{self.model_name}"
        try:
            stats = self.storage.load_api_stats(name) or {}
            entry = stats.setdefault(call, {'calls': 0, 'total_ms': 0})
            entry['calls'] += 1
            entry['total_ms'] += ms
            self.storage.save_api_stats(name, stats)
        except Exception as e:
            logger.warning(f"Failed to record API stats for {name}: {e}")

    def get_stats(self) -> dict:
        if self.storage is None:
            return {}
        return self.storage.load_api_stats(f"gemini:{self.model_name}") or {}

    def generate_drill(self, mode: str, tier: int, rating: int,
                       forced_kind: str | None = None) -> tuple[dict, int]:
        is_listening = mode == 'listening'
        theme = random.choice(THEMES)
        level = TIER_DESCRIPTIONS.get(tier, TIER_DESCRIPTIONS[5])
        boss_line = BOSS_INSTRUCTIONS.get(forced_kind, '')

        if is_listening:
            task = f"""
            1. Create a meaningful English sentence about {theme}. It should be challenging to
               listen to (linking sounds, detailed information).
            2. Put a short instruction for the student in 'source_text'.
            3. Put the exact transcript in 'reference_answer'.
            """
        else:
            task = f"""
            1. Create a meaningful {self.source_language} sentence about {theme}.
            2. Put it in 'source_text'.
            3. Put an ideal English translation in 'reference_answer'.
            """

        prompt = f"""
            You are an expert English tutor writing a {'listening dictation' if is_listening else 'translation drill'}.

            Student rating: {rating}. Difficulty tier {tier} of {MAX_TIER}: {level}
            {boss_line}

            Task:
            {task}
            4. List 2-3 useful English vocabulary words from the answer in 'vocab_hints'.

            Output strictly a JSON object with keys source_text, reference_answer, vocab_hints.
            No markdown formatting, no other text.
        """
        response, ms = self._execute_chat(prompt)
        drill = self._parse_json(response, 'drill')
        self._record_stats('generate_drill', ms)
        logger.info(f"Generated {mode} drill at tier {tier} in {ms}ms")
        return (drill, ms)

    def score_answer(self, user_answer: str, reference_answer: str, source_text: str,
                     rating: int, mode: str, is_reversed: bool = False) -> tuple[dict, int]:
        if mode == 'listening':
            context = f"""
            The student listened to an English sentence and wrote down what they heard.
            Exact transcript: "{reference_answer}"
            """
            criteria = "1. Exactness of the transcript.\n            2. Spelling and punctuation."
            segments_line = ("'segments': a list of objects {\"text\", \"correct\"} splitting the "
                             "student's answer into matching and mismatching stretches.")
        else:
            direction = (f"from English back into {self.source_language}" if is_reversed
                         else f"from {self.source_language} into English")
            source, reference = (reference_answer, source_text) if is_reversed else (source_text, reference_answer)
            context = f"""
            The student was asked to translate {direction}:
            "{source}"

            The reference translation is:
            "{reference}"
            """
            criteria = ("1. Accuracy of meaning against the source.\n"
                        "            2. Grammar and sentence structure.\n"
                        "            3. Vocabulary choice.")
            segments_line = ""

        prompt = f"""
            Act as a strict examiner. The student's rating is {rating}.
            {context}
            The student wrote:
            "{user_answer}"

            Evaluation criteria:
            {criteria}

            Respond strictly with a JSON object:
            'score': number from 0 to 10 (decimals allowed).
            'feedback': list of 2-3 specific, constructive feedback points.
            'improved_version': an improved version of the student's answer.
            {segments_line}

            No markdown formatting, no other text.
        """
        response, ms = self._execute_chat(prompt)
        judgement = self._parse_json(response, 'score')
        if 'score' not in judgement:
            logger.warning(f"AI response missing score: {response}")
        self._record_stats('score_answer', ms)
        return (judgement, ms)
