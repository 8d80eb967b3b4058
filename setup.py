from setuptools import setup, find_packages


setup(
    name='torch_dla',
    version='0.0.1',
    packages=find_packages(include=['torch_dla', 'torch_dla.*']),
    install_requires=[
        'torch>=2.0.0',
    ],
    extras_require={
        'test':['pytest','numpy','scipy'],
        'docs':['sphinx','furo']
    }
)
