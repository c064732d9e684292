from setuptools import setup, find_packages

setup(
    name='formulary',
    version='0.1.0',
    package_dir={'': 'src'},
    packages=find_packages('src'),
    python_requires='>=3.10',
    install_requires=[
        'aiohttp',
        'aiofiles',
        'Jinja2',
        'PyYAML',
        'rich',
    ],
    extras_require={
        'test': [
            'pytest',
            'pytest-asyncio',
            'pytest-mock',
        ],
    },
    entry_points={
        'console_scripts': [
            'formulary=formulary.cli:main',
        ],
    },
)
