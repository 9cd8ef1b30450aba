from setuptools import setup

setup(
    name='nord',
    version='0.1.0',
    description='Gateway session client with heartbeating and transparent resuming.',
    packages=['nord'],
    python_requires='>=3.8',
    install_requires=['wsproto', 'aiohttp'],
    extras_require={
        'perf': ['ujson'],
        'tests': ['pytest', 'pytest-asyncio'],
    },
)
