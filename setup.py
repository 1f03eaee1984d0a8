from setuptools import setup

version = '0.1'

with open("README.md", "r", encoding="utf-8") as f:
    long_descr = f.read()

setup(
    name='pyavctl',
    packages=['pyavctl'],
    version=version,
    license='Apache 2.0',
    description='Control Pioneer AV receivers and PJLink projectors',
    long_description=long_descr,
    long_description_content_type='text/markdown',
    author='johnno',
    author_email='johnno@example.com',
    url='https://github.com/johnno/pyavctl',
    download_url=f'https://github.com/johnno/pyavctl/archive/{version}.tar.gz',
    keywords=['Pioneer', 'AVR', 'PJLink', 'Projector', 'RS-232'],
    install_requires=[
        "pyserial-asyncio>=0.6"
    ],
    extras_require={
        "test": [
            "pytest>=7.0"
        ]
    },
    python_requires='>=3.9',
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Topic :: Home Automation',
        'License :: OSI Approved :: Apache Software License',
        'Programming Language :: Python :: 3.10'
    ],
)
