"""
Photo challenge topics.
"""
import random


PHOTO_TOPICS = [
    "Something Blue",
    "Weirdest Shadow",
    "Shoe Selfie",
    "Reflection",
    "Your Best Angle",
    "Something Tiny",
    "Food Porn",
    "Worst Haircut",
    "Pet (or Random Animal)",
    "Ceiling Fan",
    "Most Boring Object",
    "Your Desk Right Now",
    "Something Red",
    "Closest Person",
    "Ugliest Thing in Your Room",
    "Your Favorite Mug",
    "Double Chin Challenge",
    "Something with Text",
    "Weird Pattern",
    "Your Shoes",
    "Something Green",
    "Looking Up",
    "Your Hand",
    "Something Soft",
    "Most Chaotic Corner",
]


def random_topic() -> str:
    """Pick a topic uniformly at random."""
    return random.choice(PHOTO_TOPICS)
