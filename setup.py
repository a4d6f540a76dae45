from setuptools import find_packages, setup

setup(
    name="tg-video-relay",
    version="0.1.0",
    description="Copy new Telegram channel videos to S3-compatible storage and announce them via webhook",
    python_requires=">=3.9",
    package_dir={"": "src"},
    packages=find_packages("src"),
    install_requires=[
        "requests>=2.32.0",
        "boto3>=1.34.0",
        "telethon>=1.36.0",
    ],
    extras_require={
        "dev": [
            "pytest>=8.2.0",
            "moto[s3]>=5.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "tg-video-relay=tg_video_relay.cli:main",
        ]
    },
)
