"""
setup.py: Setup script for the SWU Card Scanner
"""

from setuptools import setup, find_packages

setup(
    name="swu-card-scanner",
    version="0.1.0",
    description="Perceptual-hash card recognition for Star Wars: Unlimited",
    packages=find_packages(),
    install_requires=[
        "opencv-python>=4.8.0",
        "Pillow>=10.0.0",
        "imagehash>=4.3.1",
        "numpy>=1.24.0",
        "aiohttp>=3.9.0",
        "sqlalchemy>=2.0.0",
        "pydantic>=2.5.0",
        "click>=8.1.7",
        "python-dotenv>=1.0.0",
        "tqdm>=4.66.0",
    ],
    extras_require={
        'test': [
            'pytest>=7.4.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'swu-scan=swu_scanner.cli.main:cli',
        ],
    },
)
