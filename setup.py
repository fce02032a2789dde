# setup.py
from setuptools import setup, find_packages

setup(
    name="fluidcoder-project",
    version="0.1.0",
    description="Turns streamed multi-file model responses into reviewed, versioned project state. "
                "Composed of the fluidcoder, fluidhistory and fluidcontext libraries.",
    author="FluidCoder Team",
    # 三个顶级包一起发布：fluidcoder 依赖 fluidhistory 与 fluidcontext
    packages=find_packages(include=['fluidcoder', 'fluidcoder.*', 'fluidhistory', 'fluidhistory.*',
                                    'fluidcontext', 'fluidcontext.*']),
    include_package_data=True,
    package_data={
        'fluidcoder': ['templates/*.j2', 'templates/prompts/*.j2'],
    },
    install_requires=[
        "click>=8.0",
        "pyyaml",
        "jinja2",
        "rich",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        'console_scripts': [
            'fluidcoder = fluidcoder.cli:cli',
        ],
    },
    python_requires=">=3.8",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Code Generators",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)
