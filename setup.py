from setuptools import setup, find_packages

setup(
    name='udp-ws-bridge',
    version='0.3.0',
    packages=find_packages(exclude=['tests', 'tests.*']),
    install_requires=[
        'setuptools',
        'fastapi>=0.104.0',
        'uvicorn>=0.24.0',
        'websockets>=12.0',
    ],
    extras_require={
        'test': [
            'pytest',
            'pytest-asyncio>=0.23',
            'httpx',
        ],
    },
    python_requires='>=3.8',
    zip_safe=True,
    description='UDP <-> WebSocket bridge with shared broadcast socket and echo suppression',
    license='MIT',
    tests_require=['pytest', 'pytest-asyncio', 'httpx'],
    entry_points={
        'console_scripts': [
            'udp-ws-bridge = udp_ws_bridge.main:main',
        ],
    },
)
