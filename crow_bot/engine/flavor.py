from __future__ import annotations

import random
from typing import Optional

DEFAULT_SPEAKER_ONE = "Anonymous Coward"
DEFAULT_SPEAKER_TWO = "Redacted"

DESCRIPTIONS_ONE = (
    "a superhumanly strong",
    "a brilliant but troubled",
    "a time-traveling",
    "a genetically enhanced",
    "a cybernetically augmented",
    "a telepathic",
    "a shape-shifting",
    "a dimension-hopping",
    "a technologically advanced",
    "a magically empowered",
)
OCCUPATIONS_ONE = (
    "former detective",
    "ex-spy",
    "disgraced scientist",
    "retired superhero",
    "rogue AI researcher",
    "reformed villain",
    "exiled royal",
    "amnesiac assassin",
    "interdimensional refugee",
    "time-displaced warrior",
)
TRAITS_ONE = (
    "with a mysterious past",
    "with a score to settle",
    "with nothing left to lose",
    "with a secret identity",
    "with supernatural abilities",
    "with advanced martial arts training",
    "with a tragic backstory",
    "with a vendetta against crime",
    "with a photographic memory",
    "with unfinished business",
)
DESCRIPTIONS_TWO = (
    "a sarcastic",
    "a no-nonsense",
    "a radical",
    "a by-the-book",
    "a rebellious",
    "a tech-savvy",
    "a streetwise",
    "a wealthy",
    "a mysterious",
    "an eccentric",
)
OCCUPATIONS_TWO = (
    "hacker",
    "martial artist",
    "forensic scientist",
    "archaeologist",
    "journalist",
    "medical examiner",
    "weapons expert",
    "psychologist",
    "conspiracy theorist",
    "paranormal investigator",
)
TRAITS_TWO = (
    "with a secret technique",
    "with a passion for justice",
    "with unconventional methods",
    "with a troubled past",
    "with powerful connections",
    "with a unique perspective",
    "with specialized equipment",
    "with a hidden agenda",
    "with incredible luck",
    "with unwavering determination",
)

GENRE_ADJECTIVES = (
    "post", "neo", "proto", "retro", "avant", "experimental", "progressive", "psychedelic", "ambient",
    "industrial", "cosmic", "ethereal", "dystopian", "utopian", "quantum", "cyber", "digital", "analog",
    "organic", "synthetic",
)
GENRES = (
    "punk", "metal", "jazz", "folk", "rock", "pop", "wave", "core", "funk", "soul", "blues", "grunge",
    "disco", "techno", "house", "trance", "dubstep", "ska", "reggae", "rap",
)
GENRE_MODIFIERS = ("fusion", "revival", "wave", "core", "gaze", "step", "hop", "beat", "tronica", "scape")
ABSURD_GENRES = (
    "recursive polka",
    "interpretive silence",
    "quantum yodeling",
    "bureaucratic noise",
    "existential elevator music",
    "passive-aggressive ambient",
    "minimalist maximalism",
    "corporate zen",
    "caffeinated slowcore",
    "anti-music",
    "theoretical jazz",
    "accidental rhythm",
    "recursive recursion",
    "meta-meta",
    "post-everything",
)

INSULT_ADJECTIVES = (
    "orange", "incompetent", "narcissistic", "delusional", "corrupt", "pathetic", "fraudulent", "unhinged",
    "moronic", "bloated", "rambling", "incoherent", "dishonest", "petulant", "infantile", "vindictive",
    "self-absorbed", "thin-skinned", "cowardly", "bankrupt", "failed", "impeached", "disgraced", "indicted",
    "convicted", "spray-tanned", "bumbling", "embarrassing", "shameless", "desperate", "whining", "grifting",
)
INSULT_NOUNS = (
    "grifter", "conman", "buffoon", "manchild", "narcissist", "fraud", "demagogue", "charlatan", "liar",
    "cheat", "bully", "coward", "loser", "disgrace", "embarrassment", "failure", "joke", "menace", "disaster",
    "felon", "crook", "scammer", "swindler", "huckster", "blowhard", "windbag", "gasbag", "blatherskite",
    "ignoramus",
)

BUZZ_ADVERBS = ("proactively", "seamlessly", "holistically", "synergistically", "dynamically", "strategically")
BUZZ_VERBS = ("leverage", "disrupt", "synergize", "incentivize", "operationalize", "monetize", "ideate", "pivot")
BUZZ_ADJECTIVES = (
    "scalable", "cloud-native", "blockchain-enabled", "AI-driven", "mission-critical", "best-of-breed",
    "frictionless", "omnichannel", "next-generation", "hyperlocal",
)
BUZZ_NOUNS = (
    "paradigms", "deliverables", "synergies", "value propositions", "ecosystems", "mindshare",
    "bandwidth", "action items", "learnings", "core competencies",
)


def crime_fighting_duo(
    speaker_one: Optional[str],
    speaker_two: Optional[str],
    rng: Optional[random.Random] = None,
) -> str:
    rng = rng or random.Random()
    first = speaker_one or DEFAULT_SPEAKER_ONE
    second = speaker_two or DEFAULT_SPEAKER_TWO
    return (
        f"{first} is {rng.choice(DESCRIPTIONS_ONE)} {rng.choice(OCCUPATIONS_ONE)} {rng.choice(TRAITS_ONE)}. "
        f"{second} is {rng.choice(DESCRIPTIONS_TWO)} {rng.choice(OCCUPATIONS_TWO)} {rng.choice(TRAITS_TWO)}. "
        "They fight crime!"
    )


def band_genre(band_name: str, rng: Optional[random.Random] = None) -> str:
    rng = rng or random.Random()
    if rng.random() < 0.2:
        genre = rng.choice(ABSURD_GENRES)
    else:
        parts = []
        if rng.random() < 0.8:
            parts.append(rng.choice(GENRE_ADJECTIVES))
        parts.append(rng.choice(GENRES))
        if rng.random() < 0.5:
            parts.append(rng.choice(GENRE_MODIFIERS))
        genre = "-".join(parts)
        if rng.random() < 0.3:
            genre = f"{genre}/{rng.choice(GENRES)} crossover"
    return f"What kind of music does {band_name} play? {genre}"


def insult(rng: Optional[random.Random] = None) -> str:
    rng = rng or random.Random()
    adjective = rng.choice(INSULT_ADJECTIVES) if INSULT_ADJECTIVES else "incompetent"
    noun = rng.choice(INSULT_NOUNS) if INSULT_NOUNS else "grifter"
    return f"{adjective} {noun}"


def buzz(rng: Optional[random.Random] = None) -> str:
    rng = rng or random.Random()
    phrase = (
        f"We need to {rng.choice(BUZZ_ADVERBS)} {rng.choice(BUZZ_VERBS)} "
        f"our {rng.choice(BUZZ_ADJECTIVES)} {rng.choice(BUZZ_NOUNS)}."
    )
    return phrase
