"""Entry point for running the anime notifier module directly"""
from anime_notifier.service import main

if __name__ == "__main__":
    main()
