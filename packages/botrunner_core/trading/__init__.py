"""Domain types shared by the engine services"""
