"""
Game services: lobby membership, topics, images and the AI judge.
"""
